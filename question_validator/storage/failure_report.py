"""Markdown report of records the repair loop gave up on.

The report has three parts: a header with a ``**Last Updated:**`` line, a
summary table with one row per failure, and a detailed block per failure
appended at the end.  Rows are inserted just above the
``---\\n\\n## Detailed Failure Logs`` marker, so the file stays readable
as it grows.

Writes are read-modify-write under a ``filelock.FileLock`` next to the
report.  Entries are never removed by the application.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from filelock import FileLock

from question_validator.schema.contract import STORAGE_ID_FIELD
from question_validator.schema.errors import ValidationError

DETAILS_MARKER = "---\n\n## Detailed Failure Logs"
TABLE_HEADER = "| Timestamp | Slug | Document ID | Retry Attempts | Failure Reason | Error Count |"
TABLE_SEPARATOR = "|-----------|------|-------------|----------------|----------------|-------------|"
REASON_PREVIEW_CHARS = 50
LOCK_TIMEOUT_S = 10

ACTION_REQUIRED = (
    "Manual correction needed. Review the validation errors and check if the prompt "
    "needs adjustment or if the question content is too complex for automated repair."
)

_LAST_UPDATED_RE = re.compile(r"\*\*Last Updated:\*\* (.+)")


@dataclass
class FailureEntry:
    timestamp: str
    slug: str
    document_id: str
    title: str | None
    retry_attempts: int
    failure_reason: str
    original_validation_errors: list[ValidationError] = field(default_factory=list)
    backup_file_path: str | None = None

    @classmethod
    def create(
        cls,
        document: Mapping[str, Any],
        errors: Iterable[ValidationError],
        reason: str,
        attempts: int,
        backup_path: Path | str | None = None,
    ) -> FailureEntry:
        document_id = document.get(STORAGE_ID_FIELD)
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            slug=document.get("slug") or "unknown-slug",
            document_id=str(document_id) if document_id else "no-id",
            title=document.get("title"),
            retry_attempts=attempts,
            failure_reason=reason,
            original_validation_errors=list(errors),
            backup_file_path=str(backup_path) if backup_path is not None else None,
        )


@dataclass
class FailureReportStats:
    total_failures: int
    last_updated: str


def _cell(value: Any) -> str:
    return str(value).replace("\n", " ").replace("|", "\\|")


def _format_timestamp(timestamp: str) -> str:
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return timestamp
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%d %H:%M:%S")


def render_header(now: str | None = None) -> str:
    now = now or datetime.now(timezone.utc).isoformat()
    return (
        "# AI Correction Failures Report\n"
        "\n"
        "This file tracks all coding questions that could not be automatically corrected "
        "by the repair service. These questions require manual review and intervention.\n"
        "\n"
        f"**Last Updated:** {now}\n"
        "\n"
        "---\n"
        "\n"
        "## Failed Corrections Summary\n"
        "\n"
        f"{TABLE_HEADER}\n"
        f"{TABLE_SEPARATOR}\n"
        "\n"
        f"{DETAILS_MARKER}\n"
        "\n"
    )


def render_table_row(entry: FailureEntry) -> str:
    reason = entry.failure_reason[:REASON_PREVIEW_CHARS]
    if len(entry.failure_reason) > REASON_PREVIEW_CHARS:
        reason += "..."
    return (
        f"| {_format_timestamp(entry.timestamp)} | {_cell(entry.slug)} | {_cell(entry.document_id)} "
        f"| {entry.retry_attempts} | {_cell(reason)} | {len(entry.original_validation_errors)} |"
    )


def render_details(entry: FailureEntry) -> str:
    error_lines = "\n".join(
        f'  {index}. Field: "{error.field or "unknown"}" - {error.message or "No message"}'
        for index, error in enumerate(entry.original_validation_errors, start=1)
    )
    return (
        "\n"
        f"### {entry.slug} ({entry.document_id})\n"
        f"- **Title:** {entry.title or 'N/A'}\n"
        f"- **Failed At:** {entry.timestamp}\n"
        f"- **Retry Attempts:** {entry.retry_attempts}\n"
        f"- **Backup File:** `{entry.backup_file_path or 'N/A'}`\n"
        "- **Original Validation Errors:**\n"
        f"{error_lines}\n"
        f"- **Failure Reason:** {entry.failure_reason}\n"
        f"- **Action Required:** {ACTION_REQUIRED}\n"
        "\n"
        "---\n"
    )


class FailureReport:
    """Append-only markdown failure report at *path*."""

    def __init__(self, path: Path | str, logger: logging.Logger | None = None) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.log = logger or logging.getLogger(__name__)

    def _lock(self) -> FileLock:
        return FileLock(str(self.lock_path), timeout=LOCK_TIMEOUT_S)

    def initialize(self) -> None:
        """Create the report with its header; leave an existing report untouched."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock():
            if self.path.exists():
                self.log.info("Failure report already exists at %s", self.path)
                return
            self.path.write_text(render_header(), encoding="utf-8")
        self.log.info("Failure report created at %s", self.path)

    def log_failure(self, entry: FailureEntry) -> None:
        self.log.info("Logging correction failure for %s (%s)", entry.slug, entry.document_id)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock():
            if self.path.exists():
                content = self.path.read_text(encoding="utf-8")
            else:
                content = render_header()

            content = _LAST_UPDATED_RE.sub(
                f"**Last Updated:** {datetime.now(timezone.utc).isoformat()}", content, count=1
            )

            marker_at = content.find(DETAILS_MARKER)
            row = render_table_row(entry)
            if marker_at == -1:
                self.log.warning("Summary table marker missing in %s; appending details only", self.path)
            else:
                # The header leaves one blank line between the table and the marker.
                insert_at = marker_at - 1 if content[marker_at - 2 : marker_at] == "\n\n" else marker_at
                content = content[:insert_at] + row + "\n" + content[insert_at:]

            content += render_details(entry)
            self.path.write_text(content, encoding="utf-8")

    def stats(self) -> FailureReportStats:
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            self.log.error("Failed to read failure report: %s", exc)
            return FailureReportStats(total_failures=0, last_updated="Unknown")

        match = _LAST_UPDATED_RE.search(content)
        return FailureReportStats(
            total_failures=len(self._table_rows(content)),
            last_updated=match.group(1) if match else "Unknown",
        )

    @staticmethod
    def _table_rows(content: str) -> list[str]:
        marker_at = content.find(DETAILS_MARKER)
        table = content if marker_at == -1 else content[:marker_at]
        return [
            line
            for line in table.splitlines()
            if line.startswith("| ") and line != TABLE_HEADER
        ]
