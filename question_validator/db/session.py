from __future__ import annotations

import logging

from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from question_validator.db import models  # noqa: F401  registers tables on Base.metadata
from question_validator.db.base import Base


class StoreConnectionError(ConnectionError):
    """The document store could not be reached."""


class Database:
    """Async engine and session factory for one store URL.

    The engine is created lazily on first use and disposed by
    :meth:`disconnect`.
    """

    def __init__(self, url: str, *, echo: bool = False, logger: logging.Logger | None = None) -> None:
        self.url = url
        self.echo = echo
        self.log = logger or logging.getLogger(__name__)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            options: dict = {"echo": self.echo, "pool_pre_ping": True}
            if not self.is_sqlite:
                options["pool_size"] = 10
            self._engine = create_async_engine(self.url, **options)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
                class_=AsyncSession,
            )
        return self._session_factory

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def connect(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(sql_text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            self.log.error("Failed to connect to store: %s", exc)
            raise StoreConnectionError(f"Cannot connect to store: {exc}") from exc
        self.log.info("Connected to store (%s)", self.engine.url.render_as_string(hide_password=True))

    async def ping(self) -> bool:
        """Liveness probe. Never raises."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(sql_text("SELECT 1"))
            return True
        except Exception as exc:  # noqa: BLE001
            self.log.warning("Store ping failed: %s", exc)
            return False

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def disconnect(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self.log.info("Disconnected from store")
