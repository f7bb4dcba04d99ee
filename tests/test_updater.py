"""Tests for SafeUpdater: validate, confirm existence, replace with retry."""
from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from question_validator.core.retry import RetryPolicy
from question_validator.tasks.updater import (
    STORE_WRITE_ERRORS,
    CandidateInvalidError,
    DocumentNotFoundError,
    SafeUpdater,
)

FAST_POLICY = RetryPolicy(max_attempts=3, base_delay_s=0, retry_on=STORE_WRITE_ERRORS)


@pytest.fixture()
def updater(repository) -> SafeUpdater:
    return SafeUpdater(repository, policy=FAST_POLICY)


# ---------------------------------------------------------------------------
# update_document
# ---------------------------------------------------------------------------


class TestUpdateDocument:
    async def test_writes_valid_candidate(self, updater, repository, make_record):
        document_id = await repository.insert(make_record(title="Old"))

        assert await updater.update_document(document_id, make_record(_id=document_id, title="New")) is True
        assert (await repository.find_by_id(document_id))["title"] == "New"

    async def test_real_write_is_retried_after_store_error(self, repository, make_record, monkeypatch):
        document_id = await repository.insert(make_record(title="Old"))
        original = repository.replace_by_id
        calls = []

        async def flaky_replace(key, record):
            calls.append(key)
            if len(calls) == 1:
                raise OperationalError("UPDATE", {}, Exception("database is locked"))
            return await original(key, record)

        monkeypatch.setattr(repository, "replace_by_id", flaky_replace)
        updater = SafeUpdater(repository, policy=FAST_POLICY)

        assert await updater.update_document(document_id, make_record(title="New")) is True
        assert len(calls) == 2
        assert (await repository.find_by_id(document_id))["title"] == "New"

    async def test_invalid_candidate_never_touches_store(self, repository, make_record):
        repo = AsyncMock(wraps=repository)
        updater = SafeUpdater(repo, policy=FAST_POLICY)

        with pytest.raises(CandidateInvalidError) as excinfo:
            await updater.update_document(str(uuid4()), make_record(difficulty="easy", extra=1))

        assert excinfo.value.error_count == 2
        assert "2 errors found" in str(excinfo.value)
        repo.find_by_id.assert_not_called()
        repo.replace_by_id.assert_not_called()

    async def test_missing_target_is_not_created(self, updater, repository, make_record):
        before = await repository.count()

        with pytest.raises(DocumentNotFoundError):
            await updater.update_document("00000000-0000-0000-0000-000000000000", make_record())

        assert await repository.count() == before

    async def test_not_found_is_not_retried(self, repository, make_record):
        repo = AsyncMock(wraps=repository)
        updater = SafeUpdater(repo, policy=FAST_POLICY)

        with pytest.raises(DocumentNotFoundError):
            await updater.update_document(str(uuid4()), make_record())

        assert repo.find_by_id.await_count == 1
        repo.replace_by_id.assert_not_called()

    async def test_transient_write_failure_is_retried(self, repository, make_record):
        document_id = await repository.insert(make_record())
        attempts: list[int] = []
        repo = AsyncMock(wraps=repository)
        repo.replace_by_id.side_effect = [
            OperationalError("UPDATE", {}, Exception("locked")),
            True,
        ]
        updater = SafeUpdater(repo, policy=FAST_POLICY, on_retry=lambda attempt, exc: attempts.append(attempt))

        assert await updater.update_document(document_id, make_record()) is True
        assert repo.replace_by_id.await_count == 2
        assert attempts == [1]

    async def test_exhausted_retries_reraise_last_error(self, repository, make_record):
        document_id = await repository.insert(make_record())
        repo = AsyncMock(wraps=repository)
        repo.replace_by_id.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        updater = SafeUpdater(repo, policy=FAST_POLICY)

        with pytest.raises(OperationalError):
            await updater.update_document(document_id, make_record())
        assert repo.replace_by_id.await_count == 3

    async def test_no_match_returns_false(self, repository, make_record):
        document_id = await repository.insert(make_record())
        repo = AsyncMock(wraps=repository)
        repo.replace_by_id.return_value = False
        repo.replace_by_id.side_effect = None
        updater = SafeUpdater(repo, policy=FAST_POLICY)

        assert await updater.update_document(document_id, make_record()) is False


# ---------------------------------------------------------------------------
# validate_and_update / update_batch
# ---------------------------------------------------------------------------


class TestConvenienceWrappers:
    async def test_validate_and_update_reports_errors(self, updater, make_record):
        outcome = await updater.validate_and_update(str(uuid4()), make_record())
        assert outcome.success is False
        assert "not found" in outcome.errors[0]

    async def test_batch_never_aborts_early(self, updater, repository, make_record):
        good = await repository.insert(make_record())
        result = await updater.update_batch(
            [
                (str(uuid4()), make_record()),
                (good, make_record(difficulty="easy")),
                (good, make_record(title="Renamed")),
            ]
        )
        assert result.successful == 1
        assert result.failed == 2
        assert [entry["document_id"] for entry in result.errors][1] == good
        assert (await repository.find_by_id(good))["title"] == "Renamed"
