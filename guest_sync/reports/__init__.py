"""
Per-run CSV reports of added and removed group members.
"""

from guest_sync.reports.csv_report import (
    ADDED_FIELDS,
    REMOVED_FIELDS,
    ReportWriter,
)

__all__ = ["ADDED_FIELDS", "REMOVED_FIELDS", "ReportWriter"]
