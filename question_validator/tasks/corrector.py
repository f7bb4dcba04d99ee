"""Correction worker: the per-item repair state machine.

One attempt walks::

    received -> corrected -> revalidated -> updated -> succeeded

and drops to ``rejected_retry`` on the first failing step, raising
:class:`CorrectionAttemptError` so the queue records the attempt and
re-delivers the item after its back-off.  When the queue has spent the
item's attempt budget it calls :meth:`CorrectionWorker.escalate` once,
which appends a :class:`FailureEntry` to the failure report.

Archiving the corrected record after a successful update is
fire-and-forget: a failure there is logged and does not undo the update.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass

from question_validator.llm.repair import CorrectionService
from question_validator.queue.correction_queue import QueueJob
from question_validator.storage.failure_report import FailureEntry, FailureReport
from question_validator.storage.snapshots import SnapshotStore
from question_validator.tasks.updater import SafeUpdater
from question_validator.validation.validator import SchemaValidator


class CorrectionState(str, enum.Enum):
    RECEIVED = "received"
    CORRECTED = "corrected"
    REVALIDATED = "revalidated"
    UPDATED = "updated"
    SUCCEEDED = "succeeded"
    REJECTED_RETRY = "rejected_retry"
    ESCALATED = "escalated"


class CorrectionAttemptError(RuntimeError):
    """One repair attempt failed; the queue decides whether to retry."""

    def __init__(self, document_id: str, state: CorrectionState, message: str) -> None:
        self.document_id = document_id
        self.state = state
        super().__init__(message)


@dataclass
class WorkerCounters:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    escalated: int = 0


class CorrectionWorker:
    """Queue processor that repairs one record per job.

    Parameters
    ----------
    corrector:
        Repair-service round trip.
    updater:
        Replace-only writer.
    snapshots:
        Used to archive corrected records and to locate the pre-change
        snapshot when escalating.
    report:
        Failure report receiving escalations.
    """

    def __init__(
        self,
        corrector: CorrectionService,
        updater: SafeUpdater,
        snapshots: SnapshotStore,
        report: FailureReport,
        *,
        validator: SchemaValidator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.corrector = corrector
        self.updater = updater
        self.snapshots = snapshots
        self.report = report
        self.validator = validator or SchemaValidator()
        self.log = logger or logging.getLogger(__name__)
        self.counters = WorkerCounters()
        self._archive_tasks: set[asyncio.Task] = set()

    async def process(self, job: QueueJob) -> None:
        item = job.data
        document_id = item.document_id
        started = time.monotonic()
        state = CorrectionState.RECEIVED
        self.log.info(
            "Processing job %s (document=%s, %d errors, attempts made %d)",
            job.id,
            document_id,
            len(item.validation_errors),
            job.attempts_made,
        )

        try:
            candidate = await self.corrector.correct(item.failed_document, item.validation_errors)
            state = CorrectionState.CORRECTED

            result = self.validator.validate(candidate)
            if not result.is_valid:
                raise CorrectionAttemptError(
                    document_id,
                    state,
                    f"Repair failed: {len(result.errors)} validation errors remain",
                )
            state = CorrectionState.REVALIDATED

            if not await self.updater.update_document(document_id, candidate):
                raise CorrectionAttemptError(document_id, state, "Failed to update document in store")
            state = CorrectionState.UPDATED
        except Exception as exc:
            self.counters.processed += 1
            self.counters.failed += 1
            self.log.error(
                "Job %s failed in state %s -> %s: %s",
                job.id,
                state.value,
                CorrectionState.REJECTED_RETRY.value,
                exc,
            )
            if isinstance(exc, CorrectionAttemptError):
                raise
            raise CorrectionAttemptError(document_id, state, str(exc)) from exc

        self.counters.processed += 1
        self.counters.successful += 1
        self._archive(candidate)
        self.log.info(
            "Job %s %s (document=%s, %d ms)",
            job.id,
            CorrectionState.SUCCEEDED.value,
            document_id,
            int((time.monotonic() - started) * 1000),
        )

    async def escalate(self, job: QueueJob, exc: BaseException) -> None:
        """Append a failure entry for *job*; called once when its attempts run out."""
        item = job.data
        snapshot = self.snapshots.snapshot_path(item.failed_document)
        backup_path = snapshot if await asyncio.to_thread(snapshot.exists) else None
        entry = FailureEntry.create(
            item.failed_document,
            item.validation_errors,
            str(exc),
            job.attempts_made,
            backup_path,
        )
        await asyncio.to_thread(self.report.log_failure, entry)
        self.counters.escalated += 1
        self.log.warning(
            "Document %s %s after %d attempts: %s",
            item.document_id,
            CorrectionState.ESCALATED.value,
            job.attempts_made,
            exc,
        )

    async def drain_archives(self) -> None:
        if self._archive_tasks:
            await asyncio.gather(*self._archive_tasks, return_exceptions=True)

    # -- internals ----------------------------------------------------------

    def _archive(self, candidate: dict) -> None:
        task = asyncio.create_task(self._archive_corrected(candidate))
        self._archive_tasks.add(task)
        task.add_done_callback(self._archive_tasks.discard)

    async def _archive_corrected(self, candidate: dict) -> None:
        try:
            await asyncio.to_thread(self.snapshots.save_corrected, candidate)
        except Exception as exc:  # noqa: BLE001
            self.log.warning("Failed to archive corrected document %s: %s", candidate.get("_id"), exc)
