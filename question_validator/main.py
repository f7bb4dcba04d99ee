"""FastAPI application factory for the health and stats surface."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from question_validator.api.health import router as health_router
from question_validator.api.stats import router as stats_router
from question_validator.core.logging import setup_logging
from question_validator.core.settings import Settings, get_settings
from question_validator.db.session import Database
from question_validator.queue.correction_queue import CorrectionQueue
from question_validator.storage.failure_report import FailureReport
from question_validator.storage.snapshots import SnapshotStore


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(settings)
        database = Database(settings.database_url, logger=logger.getChild("db"))
        app.state.settings = settings
        app.state.database = database
        app.state.queue = CorrectionQueue.from_settings(database, settings, logger=logger.getChild("queue"))
        app.state.snapshots = SnapshotStore(
            settings.failed_questions_dir, settings.corrected_questions_dir, logger=logger.getChild("snapshots")
        )
        app.state.failure_report = FailureReport(settings.failure_report_path, logger=logger.getChild("report"))
        yield
        await database.disconnect()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(stats_router)
    return app


app = create_app()
