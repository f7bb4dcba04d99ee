from __future__ import annotations

import logging
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import func, select, update

from question_validator.db.models import QuestionDocument, utcnow
from question_validator.db.session import Database
from question_validator.schema.contract import STORAGE_ID_FIELD
from question_validator.schema.records import ValidatedRecord


def parse_document_id(document_id: Any) -> UUID | None:
    if isinstance(document_id, UUID):
        return document_id
    try:
        return UUID(str(document_id))
    except (TypeError, ValueError):
        return None


def to_record(row: QuestionDocument) -> dict[str, Any]:
    """Row -> record dict with ``_id`` set to the string storage id."""
    record: dict[str, Any] = {STORAGE_ID_FIELD: str(row.id)}
    record.update((key, value) for key, value in (row.document or {}).items() if key != STORAGE_ID_FIELD)
    return record


class QuestionRepository:
    """Read access to coding-question records plus a replace-only write.

    Nothing here inserts a record: :meth:`replace_by_id` is an
    ``UPDATE ... WHERE id = :id RETURNING id`` and reports whether a row
    matched.
    """

    def __init__(self, database: Database, logger: logging.Logger | None = None) -> None:
        self.db = database
        self.log = logger or logging.getLogger(__name__)

    async def iter_batches(self, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        last_id: UUID | None = None
        batch_number = 0
        while True:
            stmt = select(QuestionDocument).order_by(QuestionDocument.id).limit(batch_size)
            if last_id is not None:
                stmt = stmt.where(QuestionDocument.id > last_id)

            async with self.db.session() as session:
                rows = (await session.execute(stmt)).scalars().all()

            if not rows:
                break

            batch_number += 1
            last_id = rows[-1].id
            self.log.debug("Fetched batch %d (%d documents)", batch_number, len(rows))
            yield [to_record(row) for row in rows]

            if len(rows) < batch_size:
                break

        self.log.info("Document streaming completed (%d batches)", batch_number)

    async def count(self) -> int:
        async with self.db.session() as session:
            total = await session.scalar(select(func.count()).select_from(QuestionDocument))
        return int(total or 0)

    async def is_empty(self) -> bool:
        return await self.count() == 0

    async def find_by_id(self, document_id: Any) -> dict[str, Any] | None:
        key = parse_document_id(document_id)
        if key is None:
            self.log.warning("Invalid document id: %r", document_id)
            return None
        async with self.db.session() as session:
            row = await session.get(QuestionDocument, key)
        return to_record(row) if row is not None else None

    async def replace_by_id(self, document_id: Any, record: ValidatedRecord) -> bool:
        """Replace the body of an existing record.

        Returns ``False`` when no row matched; never inserts.
        """
        if not isinstance(record, ValidatedRecord):
            raise TypeError("replace_by_id only accepts a ValidatedRecord")

        key = parse_document_id(document_id)
        if key is None:
            return False

        stmt = (
            update(QuestionDocument)
            .where(QuestionDocument.id == key)
            .values(document=record.without_storage_id(), updated_at=utcnow())
            .returning(QuestionDocument.id)
            .execution_options(synchronize_session=False)
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            replaced = result.scalar_one_or_none()
            await session.commit()

        if replaced is None:
            self.log.warning("Replace matched no document for id %s", document_id)
            return False
        return True

    async def insert(self, document: dict[str, Any]) -> str:
        """Seed helper used by fixtures and imports; the pipeline never calls it."""
        body = {key: value for key, value in document.items() if key != STORAGE_ID_FIELD}
        row = QuestionDocument(document=body)
        key = parse_document_id(document.get(STORAGE_ID_FIELD))
        if key is not None:
            row.id = key
        async with self.db.session() as session:
            session.add(row)
            await session.commit()
        return str(row.id)
