"""
Unit tests for the merge report store.
"""

import pytest
from datetime import datetime, timedelta, timezone

from src.merge.models import ConflictStrategy, MergeReport, TableOutcome, TableStatus
from src.merge.report_store import ReportStore


def make_report(merge_id, started_at, failed=False):
    report = MergeReport(
        merge_id=merge_id,
        strategy=ConflictStrategy.LAST_MODIFIED,
        dry_run=False,
        started_at=started_at,
        completed_at=started_at + timedelta(seconds=5)
    )
    report.add_table(TableOutcome(
        table="public.users",
        conflicts_found=3,
        rows_applied=3,
        status=TableStatus.FAILED if failed else TableStatus.COMPLETED
    ))
    return report


class TestReportStore:
    """Test saving, loading and listing reports."""

    @pytest.fixture
    def store(self, tmp_path):
        return ReportStore(str(tmp_path / "reports"))

    def test_creates_directory(self, tmp_path):
        ReportStore(str(tmp_path / "nested" / "reports"))

        assert (tmp_path / "nested" / "reports").is_dir()

    def test_save_and_load(self, store):
        report = make_report("m-1", datetime(2024, 1, 15, tzinfo=timezone.utc))

        path = store.save(report)
        loaded = store.load("m-1")

        assert path.name == "m-1.json"
        assert loaded["merge_id"] == "m-1"
        assert loaded["totals"]["conflicts_found"] == 3
        assert "saved_at" in loaded

    def test_load_missing_returns_none(self, store):
        assert store.load("does-not-exist") is None

    def test_list_reports_newest_first(self, store):
        base = datetime(2024, 1, 15, tzinfo=timezone.utc)
        store.save(make_report("older", base))
        store.save(make_report("newer", base + timedelta(days=1), failed=True))

        reports = store.list_reports()

        assert [r["merge_id"] for r in reports] == ["newer", "older"]
        assert reports[0]["tables_failed"] == 1
        assert reports[1]["rows_applied"] == 3

    def test_list_skips_unreadable_files(self, store):
        store.save(make_report("good", datetime(2024, 1, 15, tzinfo=timezone.utc)))
        (store.report_dir / "broken.json").write_text("{not json")

        assert [r["merge_id"] for r in store.list_reports()] == ["good"]

    def test_delete(self, store):
        store.save(make_report("m-1", datetime(2024, 1, 15, tzinfo=timezone.utc)))

        assert store.delete("m-1") is True
        assert store.delete("m-1") is False
        assert store.load("m-1") is None

    @pytest.mark.parametrize("merge_id", ["../escape", "a/b", "", ".hidden"])
    def test_rejects_unsafe_ids(self, store, merge_id):
        with pytest.raises(ValueError):
            store.load(merge_id)
