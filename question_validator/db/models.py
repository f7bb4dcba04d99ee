from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, func, text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from question_validator.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionDocument(Base):
    """One coding-question record.

    ``id`` is assigned by the store on insert and never changes; the record
    body lives in ``document`` without it.
    """

    __tablename__ = "coding_questions"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class CorrectionJob(Base):
    """Queue row for one WorkItem.

    Status lifecycle: pending -> active -> (completed | pending | failed).
    ``attempts_made`` is the authoritative retry counter; a job moves to
    ``failed`` (dead letter) once it reaches ``max_attempts``.
    """

    __tablename__ = "correction_jobs"
    __table_args__ = (Index("ix_correction_jobs_claim", "queue_name", "status", "available_at"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    queue_name: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    document_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", server_default=sql_text("'pending'")
    )
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    backoff_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=sql_text("0"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
