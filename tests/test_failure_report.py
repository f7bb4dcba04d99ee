"""Tests for the markdown failure report."""
from __future__ import annotations

from question_validator.schema.errors import ValidationError
from question_validator.storage.failure_report import (
    DETAILS_MARKER,
    TABLE_HEADER,
    TABLE_SEPARATOR,
    FailureEntry,
    FailureReport,
    render_table_row,
)


def _entry(slug: str = "two-sum", document_id: str = "doc-1", reason: str = "still invalid") -> FailureEntry:
    return FailureEntry.create(
        {"_id": document_id, "slug": slug, "title": "Two Sum"},
        [ValidationError.invalid_value("difficulty", "Must be one of: Easy, Medium, Hard")],
        reason,
        3,
        f"/data/failed/{slug}_{document_id}.json",
    )


class TestInitialize:
    def test_creates_header_and_empty_table(self, failure_report):
        content = failure_report.path.read_text(encoding="utf-8")
        assert content.startswith("# AI Correction Failures Report")
        assert "**Last Updated:**" in content
        assert f"{TABLE_HEADER}\n{TABLE_SEPARATOR}\n\n{DETAILS_MARKER}" in content
        assert failure_report.stats().total_failures == 0

    def test_is_idempotent(self, failure_report):
        failure_report.log_failure(_entry())
        before = failure_report.path.read_text(encoding="utf-8")

        failure_report.initialize()

        assert failure_report.path.read_text(encoding="utf-8") == before


class TestLogFailure:
    def test_rows_go_into_the_table_and_details_at_the_end(self, failure_report):
        failure_report.log_failure(_entry("first", "a"))
        failure_report.log_failure(_entry("second", "b"))

        content = failure_report.path.read_text(encoding="utf-8")
        table, details = content.split(DETAILS_MARKER)
        rows = [line for line in table.splitlines() if line.startswith("| ") and line != TABLE_HEADER]
        assert [row.split(" | ")[1] for row in rows] == ["first", "second"]
        assert details.index("### first (a)") < details.index("### second (b)")
        assert '  1. Field: "difficulty" - Field "difficulty": Must be one of: Easy, Medium, Hard' in details
        assert "- **Backup File:** `/data/failed/first_a.json`" in details
        assert "- **Action Required:** Manual correction needed." in details

    def test_stats_count_only_data_rows(self, failure_report):
        for index in range(3):
            failure_report.log_failure(_entry(document_id=f"doc-{index}"))

        stats = failure_report.stats()
        assert stats.total_failures == 3
        assert stats.last_updated != "Unknown"

    def test_missing_report_is_created_on_first_failure(self, tmp_path):
        report = FailureReport(tmp_path / "reports" / "failures.md")
        report.log_failure(_entry())
        assert report.stats().total_failures == 1

    def test_stats_of_missing_report(self, tmp_path):
        stats = FailureReport(tmp_path / "absent.md").stats()
        assert stats.total_failures == 0
        assert stats.last_updated == "Unknown"


class TestRenderTableRow:
    def test_long_reason_is_truncated(self):
        row = render_table_row(_entry(reason="x" * 80))
        assert "| " + "x" * 50 + "... |" in row

    def test_pipes_are_escaped(self):
        row = render_table_row(_entry(reason="a | b"))
        assert "a \\| b" in row

    def test_missing_identifiers_use_placeholders(self):
        entry = FailureEntry.create({}, [], "boom", 1)
        assert entry.slug == "unknown-slug"
        assert entry.document_id == "no-id"
        assert entry.backup_file_path is None
