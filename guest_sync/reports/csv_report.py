"""
CSV reports for sync runs.

Provides functionality to:
- Create one timestamped directory per run
- Write the added-members and removed-members reports
- List past run directories sorted by timestamp
- Apply retention policy to limit the number of kept runs
"""

from __future__ import annotations

import contextlib
import csv
import logging
import re
import shutil
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

ADDED_FIELDS = [
    "id",
    "userPrincipalName",
    "mail",
    "displayName",
    "givenName",
    "surname",
    "status",
]
REMOVED_FIELDS = ["id", "reason"]

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class ReportWriter:
    """
    Writer for per-run CSV reports.

    Each run gets a directory named run_YYYYMMDD_HHMMSS_<group> holding
    added_members.csv and removed_members.csv.

    Attributes:
        reports_dir: Directory path where run directories are created
        retention_count: Maximum number of run directories to keep (0 = unlimited)

    Usage:
        writer = ReportWriter(Path("~/.guest-sync/reports"), retention_count=20)

        added_path, removed_path = writer.write_run_reports(
            group_id, added_rows, removed_rows
        )

        runs = writer.list_runs()
    """

    RUN_PREFIX = "run_"
    ADDED_FILENAME = "added_members.csv"
    REMOVED_FILENAME = "removed_members.csv"

    def __init__(self, reports_dir: Path, retention_count: int = 20):
        """
        Initialize the report writer.

        Args:
            reports_dir: Directory path where run directories will be created
            retention_count: Maximum number of runs to keep (0 = keep all)
        """
        self.reports_dir = Path(reports_dir).expanduser()
        self.retention_count = retention_count

    def create_run_dir(
        self, group_id: str, timestamp: datetime | None = None
    ) -> Path:
        """
        Create the directory for one run.

        A numeric suffix is appended when two runs for the same group start
        within the same second.

        Raises:
            OSError: If the directory cannot be created
        """
        timestamp = timestamp or datetime.now()
        safe_group = _UNSAFE_NAME_CHARS.sub("_", group_id)
        base_name = (
            f"{self.RUN_PREFIX}{timestamp.strftime('%Y%m%d_%H%M%S')}_{safe_group}"
        )

        self.reports_dir.mkdir(parents=True, exist_ok=True)

        run_dir = self.reports_dir / base_name
        suffix = 1
        while True:
            try:
                run_dir.mkdir()
                return run_dir
            except FileExistsError:
                suffix += 1
                run_dir = self.reports_dir / f"{base_name}_{suffix}"

    def write_added(self, run_dir: Path, rows: Iterable[dict[str, str]]) -> Path:
        """
        Write added_members.csv.

        Rows are dictionaries keyed by ADDED_FIELDS; missing keys are
        written empty.

        Raises:
            OSError: If the file cannot be written
        """
        path = run_dir / self.ADDED_FILENAME
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=ADDED_FIELDS, restval="")
            writer.writeheader()
            for row in rows:
                writer.writerow({k: row.get(k, "") for k in ADDED_FIELDS})
        return path

    def write_removed(self, run_dir: Path, rows: Iterable[dict[str, str]]) -> Path:
        """
        Write removed_members.csv.

        Raises:
            OSError: If the file cannot be written
        """
        path = run_dir / self.REMOVED_FILENAME
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=REMOVED_FIELDS)
            writer.writeheader()
            for row in rows:
                writer.writerow({k: row.get(k, "") for k in REMOVED_FIELDS})
        return path

    def write_run_reports(
        self,
        group_id: str,
        added_rows: Iterable[dict[str, str]],
        removed_rows: Iterable[dict[str, str]],
    ) -> tuple[Path | None, Path | None]:
        """
        Write both reports for a run and apply retention.

        A report that cannot be written is logged and returned as None;
        report failures never stop a run.

        Returns:
            Tuple of (added report path, removed report path)
        """
        try:
            run_dir = self.create_run_dir(group_id)
        except OSError as e:
            logger.error(
                f"Could not create report directory in {self.reports_dir}: {e}"
            )
            return None, None

        added_path: Path | None = None
        removed_path: Path | None = None

        try:
            added_path = self.write_added(run_dir, added_rows)
        except OSError as e:
            logger.error(f"Could not write {self.ADDED_FILENAME}: {e}")

        try:
            removed_path = self.write_removed(run_dir, removed_rows)
        except OSError as e:
            logger.error(f"Could not write {self.REMOVED_FILENAME}: {e}")

        logger.info(f"Reports written to {run_dir}")
        self.apply_retention()
        return added_path, removed_path

    def list_runs(self) -> list[Path]:
        """
        List run directories sorted by timestamp (newest first).

        Returns:
            List of Path objects for run directories, sorted newest to oldest
        """
        if not self.reports_dir.exists():
            return []

        runs = [
            p
            for p in self.reports_dir.glob(f"{self.RUN_PREFIX}*")
            if p.is_dir()
        ]
        # Directory names start with the timestamp, so name order is time order
        runs.sort(key=lambda p: p.name, reverse=True)
        return runs

    def apply_retention(self) -> None:
        """
        Delete run directories beyond the most recent retention_count.

        If retention_count is 0, all runs are kept.
        """
        if self.retention_count == 0:
            return

        for run_dir in self.list_runs()[self.retention_count :]:
            with contextlib.suppress(OSError):
                shutil.rmtree(run_dir)
                logger.debug(f"Removed old report directory {run_dir.name}")
