"""Database-backed work queue for correction jobs.

Each :class:`WorkItem` becomes one ``correction_jobs`` row.  Job status
moves through:

    pending -> active -> completed
                      -> pending   (attempt failed, retry after back-off)
                      -> failed    (attempt budget spent; dead letter)

``attempts_made`` on the row is the single retry counter.  It is bumped
once per failed processor call, mirrored into the payload's
``retryCount``, and compared against ``max_attempts`` to decide between a
delayed retry and the dead letter.  The ``on_failed`` hook runs exactly
once, on the transition to ``failed``.

Several workers (in one process or many) can share a queue: claims use
``SELECT ... FOR UPDATE SKIP LOCKED`` on backends that support it, and
``active`` jobs whose lock is older than ``stalled_after_s`` are handed
back to ``pending``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import and_, case, delete, func, select, update

from question_validator.core.settings import Settings
from question_validator.db.models import CorrectionJob, utcnow
from question_validator.db.session import Database
from question_validator.schema.messages import WorkItem

JOB_PENDING = "pending"
JOB_ACTIVE = "active"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

JOB_STATUSES = frozenset({JOB_PENDING, JOB_ACTIVE, JOB_COMPLETED, JOB_FAILED})

DEFAULT_CLEAN_GRACE_S = 24 * 60 * 60


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass
class QueueJob:
    id: str
    name: str
    data: WorkItem
    attempts_made: int
    max_attempts: int
    status: str = JOB_ACTIVE
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: CorrectionJob) -> QueueJob:
        return cls(
            id=str(row.id),
            name=row.name,
            data=WorkItem.from_dict(row.payload),
            attempts_made=row.attempts_made,
            max_attempts=row.max_attempts,
            status=row.status,
            last_error=row.last_error,
        )


@dataclass
class QueueStats:
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


Processor = Callable[[QueueJob], Awaitable[None]]
FailedHandler = Callable[[QueueJob, BaseException], Awaitable[None]]


def job_name(item: WorkItem) -> str:
    return f"validate-{item.document_id}"


def backoff_delay_ms(backoff_ms: int, attempts_made: int) -> int:
    """Exponential back-off: ``backoff_ms * 2 ** (attempts_made - 1)``."""
    return backoff_ms * (2 ** max(attempts_made - 1, 0))


def _parse_job_id(job_id: str) -> UUID | None:
    try:
        return UUID(str(job_id))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# CorrectionQueue
# ---------------------------------------------------------------------------


class CorrectionQueue:
    """Producer/consumer facade over the ``correction_jobs`` table.

    Parameters
    ----------
    database:
        Shared store handle.
    name:
        Queue name; rows of other queues in the same table are ignored.
    max_attempts:
        Default attempt budget per job.
    backoff_ms:
        Base delay of the exponential back-off between attempts.
    poll_interval_s:
        How long an idle worker sleeps before polling again.
    stalled_after_s:
        Age after which an ``active`` job is considered abandoned.
    """

    def __init__(
        self,
        database: Database,
        *,
        name: str = "question-validation-queue",
        max_attempts: int = 3,
        backoff_ms: int = 5000,
        poll_interval_s: float = 1.0,
        stalled_after_s: float = 600.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.db = database
        self.name = name
        self.max_attempts = max_attempts
        self.backoff_ms = backoff_ms
        self.poll_interval_s = poll_interval_s
        self.stalled_after_s = stalled_after_s
        self.log = logger or logging.getLogger(__name__)
        self._paused = False

    @classmethod
    def from_settings(
        cls, database: Database, settings: Settings, logger: logging.Logger | None = None
    ) -> CorrectionQueue:
        return cls(
            database,
            name=settings.queue_name,
            max_attempts=settings.retry_max_attempts,
            backoff_ms=settings.retry_delay_ms,
            poll_interval_s=settings.queue_poll_interval_s,
            stalled_after_s=settings.queue_stalled_after_s,
            logger=logger,
        )

    # -- producer -----------------------------------------------------------

    async def enqueue(
        self,
        item: WorkItem,
        *,
        max_attempts: int | None = None,
        backoff_ms: int | None = None,
    ) -> str:
        row = CorrectionJob(
            queue_name=self.name,
            name=job_name(item),
            document_id=item.document_id,
            status=JOB_PENDING,
            payload=item.to_dict(),
            attempts_made=item.retry_count,
            max_attempts=max_attempts or self.max_attempts,
            backoff_ms=self.backoff_ms if backoff_ms is None else backoff_ms,
            available_at=utcnow(),
        )
        try:
            async with self.db.session() as session:
                session.add(row)
                await session.commit()
        except Exception as exc:
            self.log.error("Failed to add job for document %s: %s", item.document_id, exc)
            raise

        self.log.info(
            "Job %s added to queue (document=%s, question_id=%s)",
            row.id,
            item.document_id,
            item.failed_document.get("question_id"),
        )
        return str(row.id)

    # -- inspection ---------------------------------------------------------

    async def stats(self) -> QueueStats:
        now = utcnow()
        is_delayed = and_(CorrectionJob.status == JOB_PENDING, CorrectionJob.available_at > now)
        stmt = (
            select(
                CorrectionJob.status,
                func.sum(case((is_delayed, 1), else_=0)),
                func.count(),
            )
            .where(CorrectionJob.queue_name == self.name)
            .group_by(CorrectionJob.status)
        )
        async with self.db.session() as session:
            rows = (await session.execute(stmt)).all()

        stats = QueueStats()
        for status, delayed, total in rows:
            delayed = int(delayed or 0)
            if status == JOB_PENDING:
                stats.delayed = delayed
                stats.waiting = int(total) - delayed
            elif status == JOB_ACTIVE:
                stats.active = int(total)
            elif status == JOB_COMPLETED:
                stats.completed = int(total)
            elif status == JOB_FAILED:
                stats.failed = int(total)
        return stats

    async def get_job(self, job_id: str) -> QueueJob | None:
        key = _parse_job_id(job_id)
        if key is None:
            return None
        async with self.db.session() as session:
            row = await session.get(CorrectionJob, key)
        if row is None or row.queue_name != self.name:
            return None
        return QueueJob.from_row(row)

    # -- control ------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def pause(self) -> None:
        """Stop workers created from this queue from claiming new jobs."""
        self._paused = True
        self.log.info("Queue %s paused", self.name)

    async def resume(self) -> None:
        self._paused = False
        self.log.info("Queue %s resumed", self.name)

    async def clean(self, grace_s: float = DEFAULT_CLEAN_GRACE_S) -> int:
        """Delete completed and failed jobs that finished more than *grace_s* ago."""
        cutoff = utcnow() - timedelta(seconds=grace_s)
        stmt = delete(CorrectionJob).where(
            CorrectionJob.queue_name == self.name,
            CorrectionJob.status.in_((JOB_COMPLETED, JOB_FAILED)),
            CorrectionJob.finished_at < cutoff,
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        removed = result.rowcount or 0
        self.log.info("Queue %s cleaned (%d jobs removed, grace %ss)", self.name, removed, grace_s)
        return removed

    # -- consumer side ------------------------------------------------------

    async def claim(self, limit: int) -> list[QueueJob]:
        """Move up to *limit* due pending jobs to ``active`` and return them."""
        if limit <= 0:
            return []
        now = utcnow()
        stmt = (
            select(CorrectionJob)
            .where(
                CorrectionJob.queue_name == self.name,
                CorrectionJob.status == JOB_PENDING,
                CorrectionJob.available_at <= now,
            )
            .order_by(CorrectionJob.available_at, CorrectionJob.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        async with self.db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            for row in rows:
                row.status = JOB_ACTIVE
                row.locked_at = now
            await session.commit()
        return [QueueJob.from_row(row) for row in rows]

    async def complete(self, job: QueueJob) -> None:
        now = utcnow()
        stmt = (
            update(CorrectionJob)
            .where(CorrectionJob.id == UUID(job.id), CorrectionJob.status == JOB_ACTIVE)
            .values(status=JOB_COMPLETED, finished_at=now, locked_at=None, updated_at=now)
        )
        async with self.db.session() as session:
            await session.execute(stmt)
            await session.commit()
        job.status = JOB_COMPLETED

    async def fail(self, job: QueueJob, exc: BaseException) -> bool:
        """Record a failed attempt.

        Returns ``True`` when this failure spent the last attempt and the job
        moved to ``failed``; ``False`` when it was scheduled for a retry (or
        was no longer active).
        """
        now = utcnow()
        async with self.db.session() as session:
            row = await session.get(CorrectionJob, UUID(job.id))
            if row is None or row.status != JOB_ACTIVE:
                return False

            row.attempts_made += 1
            row.last_error = str(exc)
            row.locked_at = None
            payload = dict(row.payload)
            payload["retryCount"] = row.attempts_made
            row.payload = payload

            exhausted = row.attempts_made >= row.max_attempts
            if exhausted:
                row.status = JOB_FAILED
                row.finished_at = now
            else:
                row.status = JOB_PENDING
                row.available_at = now + timedelta(
                    milliseconds=backoff_delay_ms(row.backoff_ms, row.attempts_made)
                )
            await session.commit()

        job.attempts_made = row.attempts_made
        job.data = job.data.with_retry_count(row.attempts_made)
        job.status = row.status
        job.last_error = row.last_error
        return exhausted

    async def release(self, job: QueueJob) -> None:
        """Hand an interrupted job back to ``pending`` without counting an attempt."""
        now = utcnow()
        stmt = (
            update(CorrectionJob)
            .where(CorrectionJob.id == UUID(job.id), CorrectionJob.status == JOB_ACTIVE)
            .values(status=JOB_PENDING, locked_at=None, available_at=now, updated_at=now)
        )
        async with self.db.session() as session:
            await session.execute(stmt)
            await session.commit()
        job.status = JOB_PENDING

    async def reclaim_stalled(self) -> int:
        cutoff = utcnow() - timedelta(seconds=self.stalled_after_s)
        stmt = (
            update(CorrectionJob)
            .where(
                CorrectionJob.queue_name == self.name,
                CorrectionJob.status == JOB_ACTIVE,
                CorrectionJob.locked_at < cutoff,
            )
            .values(status=JOB_PENDING, locked_at=None, available_at=utcnow())
        )
        async with self.db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        reclaimed = result.rowcount or 0
        if reclaimed:
            self.log.warning("Reclaimed %d stalled jobs in queue %s", reclaimed, self.name)
        return reclaimed

    def create_worker(
        self,
        processor: Processor,
        *,
        concurrency: int = 1,
        on_failed: FailedHandler | None = None,
        logger: logging.Logger | None = None,
    ) -> QueueWorker:
        worker = QueueWorker(
            self, processor, concurrency=concurrency, on_failed=on_failed, logger=logger or self.log
        )
        self.log.info("Worker created (queue=%s, concurrency=%d)", self.name, concurrency)
        return worker


# ---------------------------------------------------------------------------
# QueueWorker
# ---------------------------------------------------------------------------


class QueueWorker:
    """Polling consumer running up to ``concurrency`` processors at once."""

    def __init__(
        self,
        queue: CorrectionQueue,
        processor: Processor,
        *,
        concurrency: int = 1,
        on_failed: FailedHandler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.processor = processor
        self.concurrency = concurrency
        self.on_failed = on_failed
        self.log = logger or logging.getLogger(__name__)
        self.reclaim_interval_s = min(queue.stalled_after_s, 60.0)

        self._semaphore = asyncio.Semaphore(concurrency)
        self._in_flight: set[asyncio.Task] = set()
        self._stopping = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._loop_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"queue-worker:{self.queue.name}")

    async def stop(self, grace_s: float = 5.0) -> None:
        """Stop claiming, wait up to *grace_s* for in-flight jobs, then cancel the rest."""
        self._stopping.set()
        self._wakeup.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        if not self._in_flight:
            return

        self.log.info("Waiting up to %ss for %d in-flight jobs", grace_s, len(self._in_flight))
        _, pending = await asyncio.wait(set(self._in_flight), timeout=grace_s)
        if pending:
            self.log.warning("Cancelling %d jobs still running after grace period", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def run_until(self, stop_event: asyncio.Event, grace_s: float = 5.0) -> None:
        await self.start()
        await stop_event.wait()
        await self.stop(grace_s)

    # -- internals ----------------------------------------------------------

    async def _run(self) -> None:
        last_reclaim = float("-inf")
        while not self._stopping.is_set():
            if time.monotonic() - last_reclaim >= self.reclaim_interval_s:
                last_reclaim = time.monotonic()
                try:
                    await self.queue.reclaim_stalled()
                except Exception as exc:  # noqa: BLE001
                    self.log.error("Worker error while reclaiming stalled jobs: %s", exc)

            free = self.concurrency - len(self._in_flight)
            jobs: list[QueueJob] = []
            if free > 0 and not self.queue.is_paused:
                try:
                    jobs = await self.queue.claim(free)
                except Exception as exc:  # noqa: BLE001
                    self.log.error("Worker error while claiming jobs: %s", exc)

            for job in jobs:
                self._spawn(job)

            # Either every slot is busy or nothing was due; wait for a
            # finished job, a stop request or the next poll.
            await self._idle()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.queue.poll_interval_s)
        except asyncio.TimeoutError:
            pass
        finally:
            self._wakeup.clear()

    def _spawn(self, job: QueueJob) -> None:
        task = asyncio.create_task(self._run_job(job), name=f"job:{job.id}")
        self._in_flight.add(task)
        task.add_done_callback(self._job_done)

    def _job_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._wakeup.set()

    async def _run_job(self, job: QueueJob) -> None:
        async with self._semaphore:
            try:
                await self.processor(job)
            except asyncio.CancelledError:
                await self.queue.release(job)
                raise
            except Exception as exc:  # noqa: BLE001
                await self._handle_failure(job, exc)
                return

            try:
                await self.queue.complete(job)
            except Exception as exc:  # noqa: BLE001
                self.log.error("Failed to mark job %s completed: %s", job.id, exc)
                return
            self.log.info("Worker completed job %s (document=%s)", job.id, job.data.document_id)

    async def _handle_failure(self, job: QueueJob, exc: Exception) -> None:
        try:
            exhausted = await self.queue.fail(job, exc)
        except Exception as store_exc:  # noqa: BLE001
            self.log.error("Failed to record failure of job %s: %s", job.id, store_exc)
            return

        self.log.error(
            "Worker failed job %s (document=%s, attempts %d/%d): %s",
            job.id,
            job.data.document_id,
            job.attempts_made,
            job.max_attempts,
            exc,
        )
        if not exhausted or self.on_failed is None:
            return
        try:
            await self.on_failed(job, exc)
        except Exception as hook_exc:  # noqa: BLE001
            self.log.error("on_failed hook raised for job %s: %s", job.id, hook_exc)
