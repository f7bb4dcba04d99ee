"""Tests for the database-backed correction queue and its worker."""
from __future__ import annotations

import asyncio

import pytest

from question_validator.queue.correction_queue import (
    JOB_ACTIVE,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    CorrectionQueue,
    backoff_delay_ms,
    job_name,
)
from question_validator.schema.errors import ValidationError
from question_validator.schema.messages import WorkItem


def _item(make_record, document_id: str = "doc-1") -> WorkItem:
    record = make_record(_id=document_id, difficulty="easy")
    return WorkItem.create(document_id, record, [ValidationError.invalid_value("difficulty", "bad")])


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------


class TestEnqueue:
    async def test_enqueue_creates_pending_job(self, queue, make_record):
        item = _item(make_record)
        job_id = await queue.enqueue(item)

        job = await queue.get_job(job_id)
        assert job is not None
        assert job.name == "validate-doc-1" == job_name(item)
        assert job.status == JOB_PENDING
        assert job.attempts_made == 0
        assert job.max_attempts == 3
        assert job.data.document_id == "doc-1"
        assert job.data.failed_document["difficulty"] == "easy"
        assert job.data.validation_errors == item.validation_errors

        stats = await queue.stats()
        assert stats.waiting == 1
        assert stats.to_dict() == {"waiting": 1, "active": 0, "completed": 0, "failed": 0, "delayed": 0}

    async def test_get_job_ignores_unknown_ids(self, queue):
        assert await queue.get_job("nope") is None
        assert await queue.get_job("00000000-0000-0000-0000-000000000000") is None

    async def test_queues_sharing_a_table_are_isolated(self, database, queue, make_record):
        other = CorrectionQueue(database, name="other-queue")
        job_id = await other.enqueue(_item(make_record))

        assert await queue.get_job(job_id) is None
        assert (await queue.stats()).waiting == 0
        assert await queue.claim(10) == []


# ---------------------------------------------------------------------------
# Attempt accounting
# ---------------------------------------------------------------------------


class TestAttempts:
    async def test_claim_marks_active(self, queue, make_record):
        await queue.enqueue(_item(make_record))
        jobs = await queue.claim(5)

        assert len(jobs) == 1
        assert jobs[0].status == JOB_ACTIVE
        assert (await queue.stats()).active == 1
        assert await queue.claim(5) == []

    async def test_failure_schedules_retry_and_mirrors_retry_count(self, queue, make_record):
        job_id = await queue.enqueue(_item(make_record))
        [job] = await queue.claim(1)

        exhausted = await queue.fail(job, RuntimeError("first"))

        assert exhausted is False
        assert job.attempts_made == 1
        assert job.data.retry_count == 1
        stored = await queue.get_job(job_id)
        assert stored.status == JOB_PENDING
        assert stored.attempts_made == 1
        assert stored.data.retry_count == 1
        assert stored.last_error == "first"

    async def test_budget_exhaustion_moves_job_to_failed(self, queue, make_record):
        job_id = await queue.enqueue(_item(make_record))
        outcomes = []
        for _ in range(3):
            [job] = await queue.claim(1)
            outcomes.append(await queue.fail(job, RuntimeError("still broken")))

        assert outcomes == [False, False, True]
        stored = await queue.get_job(job_id)
        assert stored.status == JOB_FAILED
        assert stored.attempts_made == 3
        assert await queue.claim(1) == []
        assert (await queue.stats()).failed == 1

    async def test_fail_on_inactive_job_is_ignored(self, queue, make_record):
        await queue.enqueue(_item(make_record))
        [job] = await queue.claim(1)
        await queue.complete(job)

        assert await queue.fail(job, RuntimeError("late")) is False
        assert (await queue.stats()).completed == 1

    async def test_backoff_delays_the_retry(self, database, make_record):
        queue = CorrectionQueue(database, name="slow", backoff_ms=60_000)
        await queue.enqueue(_item(make_record))
        [job] = await queue.claim(1)
        await queue.fail(job, RuntimeError("x"))

        stats = await queue.stats()
        assert stats.delayed == 1
        assert stats.waiting == 0
        assert await queue.claim(1) == []

    @pytest.mark.parametrize("attempts,expected", [(1, 5000), (2, 10000), (3, 20000), (0, 5000)])
    def test_backoff_is_exponential(self, attempts, expected):
        assert backoff_delay_ms(5000, attempts) == expected

    async def test_release_does_not_count_an_attempt(self, queue, make_record):
        job_id = await queue.enqueue(_item(make_record))
        [job] = await queue.claim(1)
        await queue.release(job)

        stored = await queue.get_job(job_id)
        assert stored.status == JOB_PENDING
        assert stored.attempts_made == 0

    async def test_stalled_jobs_are_reclaimed(self, database, make_record):
        queue = CorrectionQueue(database, name="stalls", stalled_after_s=0)
        await queue.enqueue(_item(make_record))
        await queue.claim(1)
        await asyncio.sleep(0.01)

        assert await queue.reclaim_stalled() == 1
        assert (await queue.stats()).waiting == 1


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    async def test_clean_removes_finished_jobs(self, queue, make_record):
        await queue.enqueue(_item(make_record, "a"))
        await queue.enqueue(_item(make_record, "b"), max_attempts=1)
        await queue.enqueue(_item(make_record, "c"))
        done, dead = await queue.claim(2)
        await queue.complete(done)
        assert await queue.fail(dead, RuntimeError("x")) is True
        await asyncio.sleep(0.01)

        assert await queue.clean(grace_s=3600) == 0
        assert await queue.clean(grace_s=0) == 2
        stats = await queue.stats()
        assert stats.completed == 0
        assert stats.failed == 0
        assert stats.waiting == 1

    async def test_pause_and_resume_flag(self, queue):
        assert queue.is_paused is False
        await queue.pause()
        assert queue.is_paused is True
        await queue.resume()
        assert queue.is_paused is False


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class TestWorker:
    async def test_processes_every_job(self, queue, make_record):
        seen: list[str] = []

        async def processor(job):
            seen.append(job.data.document_id)

        for document_id in ("a", "b", "c"):
            await queue.enqueue(_item(make_record, document_id))

        worker = queue.create_worker(processor, concurrency=2)
        await worker.start()
        try:
            await _wait_for(lambda: _completed(queue, 3))
        finally:
            await worker.stop()

        assert sorted(seen) == ["a", "b", "c"]
        assert worker.running is False

    async def test_exhausted_job_fires_on_failed_once(self, queue, make_record):
        calls = []
        failures = []

        async def processor(job):
            calls.append(job.attempts_made)
            raise RuntimeError(f"attempt {job.attempts_made + 1} failed")

        async def on_failed(job, exc):
            failures.append((job.attempts_made, job.data.retry_count, str(exc)))

        job_id = await queue.enqueue(_item(make_record))
        worker = queue.create_worker(processor, on_failed=on_failed)
        await worker.start()
        try:
            await _wait_for(lambda: _failed(queue, 1))
            await asyncio.sleep(0.1)
        finally:
            await worker.stop()

        assert calls == [0, 1, 2]
        assert failures == [(3, 3, "attempt 3 failed")]
        assert (await queue.get_job(job_id)).status == JOB_FAILED

    async def test_paused_queue_is_not_claimed(self, queue, make_record):
        seen = []

        async def processor(job):
            seen.append(job.id)

        await queue.enqueue(_item(make_record))
        await queue.pause()
        worker = queue.create_worker(processor)
        await worker.start()
        await asyncio.sleep(0.1)
        assert seen == []

        await queue.resume()
        try:
            await _wait_for(lambda: _completed(queue, 1))
        finally:
            await worker.stop()
        assert len(seen) == 1

    async def test_stop_releases_unfinished_job(self, queue, make_record):
        started = asyncio.Event()

        async def processor(job):
            started.set()
            await asyncio.sleep(30)

        job_id = await queue.enqueue(_item(make_record))
        worker = queue.create_worker(processor)
        await worker.start()
        await asyncio.wait_for(started.wait(), timeout=5)

        await worker.stop(grace_s=0.05)

        stored = await queue.get_job(job_id)
        assert stored.status == JOB_PENDING
        assert stored.attempts_made == 0
        assert worker.in_flight == 0

    async def test_run_until_stops_on_event(self, queue):
        async def processor(job):
            pass

        stop = asyncio.Event()
        worker = queue.create_worker(processor)
        runner = asyncio.create_task(worker.run_until(stop))
        await asyncio.sleep(0.05)
        assert worker.running is True

        stop.set()
        await asyncio.wait_for(runner, timeout=5)
        assert worker.running is False

    def test_concurrency_must_be_positive(self, queue):
        with pytest.raises(ValueError):
            queue.create_worker(lambda job: None, concurrency=0)


async def _completed(queue: CorrectionQueue, count: int) -> bool:
    return (await queue.stats()).completed >= count


async def _failed(queue: CorrectionQueue, count: int) -> bool:
    return (await queue.stats()).failed >= count


def test_job_status_names():
    assert (JOB_PENDING, JOB_ACTIVE, JOB_COMPLETED, JOB_FAILED) == ("pending", "active", "completed", "failed")
