"""Scan-and-enqueue producer.

Streams every record in fixed-size batches (one batch in memory at a
time, batches drained in primary-key order) and, for each invalid record,
takes a best-effort snapshot and enqueues a :class:`WorkItem`.

Per-record outcomes never abort the scan:

- snapshot failure: logged, counted in neither ``backed_up`` nor ``errors``
- enqueue failure: logged, ``errors += 1``
- anything else unexpected for that record: logged, ``errors += 1``

A failure to read from the store itself propagates.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from question_validator.db.repositories import QuestionRepository
from question_validator.queue.correction_queue import CorrectionQueue
from question_validator.schema.errors import ValidationError
from question_validator.schema.messages import WorkItem
from question_validator.schema.records import field_of, storage_id_of
from question_validator.storage.snapshots import SnapshotStore
from question_validator.validation.validator import SchemaValidator

BANNER = "=" * 60


class WorkItemSink(Protocol):
    async def enqueue(self, item: WorkItem) -> str: ...


@dataclass
class ScanStats:
    total_scanned: int = 0
    valid_documents: int = 0
    invalid_documents: int = 0
    backed_up: int = 0
    queued: int = 0
    errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    _started_monotonic: float = field(default_factory=time.monotonic, repr=False, compare=False)
    _elapsed_s: float | None = field(default=None, repr=False, compare=False)

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)
        self._elapsed_s = time.monotonic() - self._started_monotonic

    @property
    def duration_seconds(self) -> float:
        if self._elapsed_s is not None:
            return self._elapsed_s
        return time.monotonic() - self._started_monotonic

    @property
    def docs_per_second(self) -> float:
        duration = self.duration_seconds
        return self.total_scanned / duration if duration > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = {key: value for key, value in asdict(self).items() if not key.startswith("_")}
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["duration_seconds"] = round(self.duration_seconds, 2)
        data["docs_per_second"] = round(self.docs_per_second, 2)
        return data


class ScannerService:
    """Validate every stored record and queue the invalid ones for repair."""

    def __init__(
        self,
        repository: QuestionRepository,
        queue: CorrectionQueue | WorkItemSink,
        snapshots: SnapshotStore,
        *,
        validator: SchemaValidator | None = None,
        batch_size: int = 100,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.snapshots = snapshots
        self.validator = validator or SchemaValidator()
        self.batch_size = batch_size
        self.log = logger or logging.getLogger(__name__)

    async def scan_and_enqueue(self) -> ScanStats:
        stats = ScanStats()
        self.log.info("Starting document scan (batch size %d)", self.batch_size)

        total = await self.repository.count()
        self.log.info("Total documents to scan: %d", total)

        try:
            async for batch in self.repository.iter_batches(self.batch_size):
                await self._process_batch(batch, stats)
                progress = (stats.total_scanned / total * 100) if total else 100.0
                self.log.info(
                    "Scan progress: %d/%d (%.2f%%) valid=%d invalid=%d",
                    stats.total_scanned,
                    total,
                    progress,
                    stats.valid_documents,
                    stats.invalid_documents,
                )
        except Exception as exc:
            stats.finish()
            self.log.error("Scan failed after %d documents: %s", stats.total_scanned, exc)
            raise

        stats.finish()
        self._log_final_stats(stats)
        return stats

    async def scan_document(self, document_id: str) -> bool:
        """Spot check one record: fetch and validate, no side effects."""
        try:
            record = await self.repository.find_by_id(document_id)
        except Exception as exc:  # noqa: BLE001
            self.log.error("Error scanning document %s: %s", document_id, exc)
            return False
        if record is None:
            self.log.error("Document %s not found", document_id)
            return False
        return self.validator.validate(record).is_valid

    # -- internals ----------------------------------------------------------

    async def _process_batch(self, batch: Sequence[Mapping[str, Any]], stats: ScanStats) -> None:
        for record in batch:
            stats.total_scanned += 1
            try:
                result = self.validator.validate(record)
                if result.is_valid:
                    stats.valid_documents += 1
                    self.log.debug("Document %s is valid", result.document_id)
                    continue

                stats.invalid_documents += 1
                await self._handle_invalid(record, result.errors, stats)
            except Exception as exc:  # noqa: BLE001
                stats.errors += 1
                self.log.error(
                    "Error processing document %s: %s", storage_id_of(record), exc
                )

    async def _handle_invalid(
        self,
        record: Mapping[str, Any],
        errors: Sequence[ValidationError],
        stats: ScanStats,
    ) -> None:
        document_id = storage_id_of(record) or "unknown"
        self.log.info(
            "Invalid document found: %s (question_id=%s, %d errors)",
            document_id,
            field_of(record, "question_id"),
            len(errors),
        )

        try:
            await asyncio.to_thread(self.snapshots.save_snapshot, record, errors)
            stats.backed_up += 1
        except Exception as exc:  # noqa: BLE001
            self.log.error("Failed to snapshot document %s: %s", document_id, exc)

        try:
            await self.queue.enqueue(WorkItem.create(document_id, record, errors))
            stats.queued += 1
        except Exception as exc:  # noqa: BLE001
            stats.errors += 1
            self.log.error("Failed to queue document %s: %s", document_id, exc)

    def _log_final_stats(self, stats: ScanStats) -> None:
        self.log.info(BANNER)
        self.log.info("SCAN COMPLETED")
        self.log.info(BANNER)
        self.log.info(
            "Statistics: scanned=%d valid=%d invalid=%d backed_up=%d queued=%d errors=%d "
            "duration=%.2fs rate=%.2f docs/s",
            stats.total_scanned,
            stats.valid_documents,
            stats.invalid_documents,
            stats.backed_up,
            stats.queued,
            stats.errors,
            stats.duration_seconds,
            stats.docs_per_second,
        )
        self.log.info(BANNER)
