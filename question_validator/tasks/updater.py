"""Replace-only writer for repaired records.

``SafeUpdater.update_document`` never creates a record.  The sequence is:

1. re-validate the candidate (no store access when it is still invalid),
2. confirm the target exists,
3. replace it with ``UPDATE ... WHERE id = :id RETURNING id`` under the
   retry policy.

Only step 3 is retried.  An invalid candidate or a missing target is an
attempt-level failure that the caller's retry loop handles.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from question_validator.core.retry import RetryObserver, RetryPolicy, retry_async
from question_validator.db.repositories import QuestionRepository
from question_validator.schema.errors import ValidationError
from question_validator.validation.validator import SchemaValidator

STORE_WRITE_ERRORS: tuple[type[BaseException], ...] = (SQLAlchemyError, ConnectionError, OSError)


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class UpdateError(RuntimeError):
    """Base class for update failures the updater detects itself."""


class CandidateInvalidError(UpdateError):
    """The corrected record still fails validation."""

    def __init__(self, document_id: str, errors: Iterable[ValidationError]) -> None:
        self.document_id = document_id
        self.errors = tuple(errors)
        self.error_count = len(self.errors)
        super().__init__(
            f"Corrected document is still invalid: {self.error_count} errors found"
        )


class DocumentNotFoundError(UpdateError):
    """The target record does not exist; nothing was written."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(
            f"Document with ID {document_id} not found. Cannot update non-existent document."
        )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class UpdateOutcome:
    success: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class BatchUpdateResult:
    successful: int = 0
    failed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# SafeUpdater
# ---------------------------------------------------------------------------


class SafeUpdater:
    """Validate-then-replace writer for existing records.

    Parameters
    ----------
    repository:
        Store access; only ``find_by_id`` and ``replace_by_id`` are used.
    validator:
        Defaults to a fresh :class:`SchemaValidator`.
    policy:
        Retry policy for the replace step.  Defaults to 3 attempts with a
        5 s exponential base, retrying store/connection errors only.
    on_retry:
        Optional per-attempt observer passed through to the retry loop.
    """

    def __init__(
        self,
        repository: QuestionRepository,
        validator: SchemaValidator | None = None,
        policy: RetryPolicy | None = None,
        *,
        on_retry: RetryObserver | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repository = repository
        self.validator = validator or SchemaValidator()
        self.policy = policy or RetryPolicy(retry_on=STORE_WRITE_ERRORS)
        self.on_retry = on_retry
        self.log = logger or logging.getLogger(__name__)

    async def update_document(self, document_id: str, candidate: Mapping[str, Any]) -> bool:
        """Replace record *document_id* with *candidate*.

        Returns
        -------
        bool
            ``True`` when the write was confirmed, ``False`` when the store
            matched nothing (the record vanished after the existence check).

        Raises
        ------
        CandidateInvalidError
            The candidate fails validation.  The store is not touched.
        DocumentNotFoundError
            No record with this id exists.
        """
        result = self.validator.validate(candidate)
        if not result.is_valid or result.record is None:
            self.log.error(
                "Corrected document %s failed validation (%d errors)",
                document_id,
                len(result.errors),
            )
            raise CandidateInvalidError(document_id, result.errors)

        existing = await self.repository.find_by_id(document_id)
        if existing is None:
            self.log.error("Document %s not found in store", document_id)
            raise DocumentNotFoundError(document_id)

        record = result.record
        success = await retry_async(
            lambda: self.repository.replace_by_id(document_id, record),
            self.policy,
            context=f"Update document {document_id}",
            on_retry=self.on_retry,
            logger=self.log,
        )

        if success:
            self.log.info("Document %s updated (question_id=%s)", document_id, record.question_id)
        else:
            self.log.error("Update of document %s matched nothing", document_id)
        return success

    async def validate_and_update(self, document_id: str, candidate: Mapping[str, Any]) -> UpdateOutcome:
        """Like :meth:`update_document` but reports failures instead of raising."""
        try:
            return UpdateOutcome(success=await self.update_document(document_id, candidate))
        except Exception as exc:  # noqa: BLE001
            return UpdateOutcome(success=False, errors=[str(exc)])

    async def update_batch(self, updates: Iterable[tuple[str, Mapping[str, Any]]]) -> BatchUpdateResult:
        results = BatchUpdateResult()
        for document_id, candidate in updates:
            try:
                success = await self.update_document(document_id, candidate)
            except Exception as exc:  # noqa: BLE001
                results.failed += 1
                results.errors.append({"document_id": document_id, "error": str(exc)})
                continue

            if success:
                results.successful += 1
            else:
                results.failed += 1
                results.errors.append({"document_id": document_id, "error": "Update returned false"})

        self.log.info(
            "Batch update completed: %d successful, %d failed", results.successful, results.failed
        )
        return results
