from __future__ import annotations

import copy
from typing import Any

import pytest

from question_validator.core.settings import Settings, get_settings
from question_validator.db.repositories import QuestionRepository
from question_validator.db.session import Database
from question_validator.queue.correction_queue import CorrectionQueue
from question_validator.storage.failure_report import FailureReport
from question_validator.storage.snapshots import SnapshotStore

VALID_RECORD: dict[str, Any] = {
    "question_id": "q-0001",
    "title": "Two Sum",
    "difficulty": "Easy",
    "slug": "two-sum",
    "topic_tags": ["array", "hash-table"],
    "content": "Given n integers, print the sum of the first two.",
    "constraints": ["1 <= n <= 10^5"],
    "testCases": [
        {
            "id": 1,
            "input": "2\n3 5",
            "expectedOutput": "8",
            "description": "two small numbers",
            "original_input": "nums = [3,5]",
            "original_output": "8",
        }
    ],
    "starterCode": {
        "c": "int main() { return 0; }",
        "cpp": "int main() { return 0; }",
        "java": "class Main { public static void main(String[] a) {} }",
        "javascript": "function main() {}",
        "python": "def main():\n    pass",
    },
    "solutionCode": {
        "c": "#include <stdio.h>\nint main() { int n,a,b; scanf(\"%d %d %d\",&n,&a,&b); printf(\"%d\", a+b); }",
        "cpp": "#include <iostream>\nint main() { int n,a,b; std::cin>>n>>a>>b; std::cout<<a+b; }",
        "java": "import java.util.*; class Main { public static void main(String[] x) {} }",
        "javascript": "const lines = require('fs').readFileSync(0, 'utf8');",
        "python": "n = int(input())\na, b = map(int, input().split())\nprint(a + b)",
    },
    "inputFormat": "```\nn\na b\n```",
    "outputFormat": "A single integer.",
}


def build_record(**overrides: Any) -> dict[str, Any]:
    record = copy.deepcopy(VALID_RECORD)
    record.update(overrides)
    return record


@pytest.fixture()
def valid_record() -> dict[str, Any]:
    return build_record()


@pytest.fixture()
def invalid_record() -> dict[str, Any]:
    return build_record(difficulty="easy", slug="Two Sum")


@pytest.fixture()
def settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'questions.db'}",
        AI_API_KEY="sk-test-key-0123456789",
        RETRY_DELAY_MS=0,
        QUEUE_POLL_INTERVAL_S=0.05,
        FAILED_QUESTIONS_DIR=str(tmp_path / "failed_questions"),
        CORRECTED_QUESTIONS_DIR=str(tmp_path / "corrected_questions"),
        FAILURE_REPORT_PATH=str(tmp_path / "AI_CORRECTION_FAILURES.md"),
    )
    get_settings.cache_clear()


@pytest.fixture()
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await db.create_schema()
    yield db
    await db.disconnect()


@pytest.fixture()
def repository(database: Database) -> QuestionRepository:
    return QuestionRepository(database)


@pytest.fixture()
def queue(database: Database) -> CorrectionQueue:
    return CorrectionQueue(database, name="test-queue", max_attempts=3, backoff_ms=0, poll_interval_s=0.02)


@pytest.fixture()
def snapshots(tmp_path) -> SnapshotStore:
    store = SnapshotStore(tmp_path / "failed_questions", tmp_path / "corrected_questions")
    store.initialize()
    return store


@pytest.fixture()
def failure_report(tmp_path) -> FailureReport:
    report = FailureReport(tmp_path / "AI_CORRECTION_FAILURES.md")
    report.initialize()
    return report


@pytest.fixture()
def make_record():
    return build_record
