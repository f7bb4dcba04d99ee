"""FastAPI dependencies: the long-lived services live on ``app.state``."""
from __future__ import annotations

from fastapi import Request

from question_validator.core.settings import Settings
from question_validator.db.session import Database
from question_validator.queue.correction_queue import CorrectionQueue
from question_validator.storage.failure_report import FailureReport
from question_validator.storage.snapshots import SnapshotStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_queue(request: Request) -> CorrectionQueue:
    return request.app.state.queue


def get_snapshots(request: Request) -> SnapshotStore:
    return request.app.state.snapshots


def get_failure_report(request: Request) -> FailureReport:
    return request.app.state.failure_report
