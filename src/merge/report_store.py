"""
Merge Report Store

Persists merge reports as JSON files named after their merge ID so that the
status and report commands can inspect past runs.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.merge.models import MergeReport

logger = logging.getLogger(__name__)

DEFAULT_REPORT_DIR = ".merge_reports"

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class ReportStore:
    """Manages stored merge reports."""

    def __init__(self, report_dir: str = DEFAULT_REPORT_DIR):
        """
        Initialize the report store.

        Args:
            report_dir: Directory to store report files (created if missing)
        """
        self.report_dir = Path(report_dir)
        self.report_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Report directory: {self.report_dir}")

    def _path(self, merge_id: str) -> Path:
        if not merge_id or not _SAFE_ID.match(merge_id) or merge_id.startswith("."):
            raise ValueError(f"Invalid merge ID: {merge_id!r}")
        return self.report_dir / f"{merge_id}.json"

    def save(self, report: MergeReport) -> Path:
        """
        Save a merge report, replacing any earlier copy.

        Args:
            report: Report to save

        Returns:
            Path of the written file
        """
        report_file = self._path(report.merge_id)

        data = report.to_dict()
        data["saved_at"] = datetime.now(timezone.utc).isoformat()

        with open(report_file, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Report saved: {report_file}")
        return report_file

    def load(self, merge_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a stored report.

        Args:
            merge_id: Merge ID

        Returns:
            Report dictionary or None if not found
        """
        report_file = self._path(merge_id)

        if not report_file.exists():
            logger.debug(f"No report found for {merge_id}")
            return None

        with open(report_file, 'r') as f:
            return json.load(f)

    def delete(self, merge_id: str) -> bool:
        """
        Delete a stored report.

        Returns:
            True if a report was removed
        """
        report_file = self._path(merge_id)

        if report_file.exists():
            report_file.unlink()
            logger.info(f"Report deleted for {merge_id}")
            return True
        return False

    def list_reports(self) -> List[Dict[str, Any]]:
        """
        Summarize stored reports, newest first.

        Returns:
            List of report summaries
        """
        reports = []

        for report_file in self.report_dir.glob("*.json"):
            try:
                with open(report_file, 'r') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable report {report_file}: {e}")
                continue

            totals = data.get("totals", {})
            reports.append({
                "merge_id": data.get("merge_id", report_file.stem),
                "strategy": data.get("strategy"),
                "dry_run": data.get("dry_run"),
                "started_at": data.get("started_at"),
                "completed_at": data.get("completed_at"),
                "tables": totals.get("tables", 0),
                "tables_failed": totals.get("tables_failed", 0),
                "conflicts_found": totals.get("conflicts_found", 0),
                "rows_applied": totals.get("rows_applied", 0),
                "apply_errors": totals.get("apply_errors", 0),
            })

        reports.sort(key=lambda r: r.get("started_at") or "", reverse=True)
        return reports
