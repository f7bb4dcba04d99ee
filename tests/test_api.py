"""Tests for the FastAPI routes.

Covers:
- GET /health: liveness plus store reachability
- GET /stats: queue, snapshot and failure-report counters
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from question_validator.db.base import Base
from question_validator.main import create_app
from question_validator.storage.failure_report import FailureEntry, FailureReport


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(settings):
    sync_url = settings.database_url.replace("sqlite+aiosqlite", "sqlite+pysqlite")
    engine = create_engine(sync_url)
    Base.metadata.create_all(engine)
    engine.dispose()

    with TestClient(create_app(settings)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_endpoint_returns_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "Coding Question Validator"
        assert "version" in body
        assert "environment" in body
        assert body["store"] == "ok"

    def test_unreachable_store_is_reported_not_raised(self, settings):
        broken = settings.model_copy(
            update={"database_url": "sqlite+aiosqlite:////nonexistent-dir/for/sure/store.db"}
        )
        with TestClient(create_app(broken)) as test_client:
            response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["store"] == "unavailable"


# ---------------------------------------------------------------------------
# /stats
# ---------------------------------------------------------------------------


class TestStats:
    def test_empty_pipeline(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["queue"] == {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0}
        assert body["snapshots"]["total_failed_backups"] == 0
        assert body["failures"] == {"total_failures": 0, "last_updated": "Unknown"}

    def test_counts_escalated_failures(self, client, settings):
        report = FailureReport(settings.failure_report_path)
        report.initialize()
        report.log_failure(FailureEntry.create({"_id": "a", "slug": "s"}, [], "gave up", 3))

        body = client.get("/stats").json()

        assert body["failures"]["total_failures"] == 1
        assert body["failures"]["last_updated"] != "Unknown"
