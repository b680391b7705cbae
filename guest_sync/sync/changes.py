"""
Classification of raw membership delta entries.

Each raw member entry from the delta feed is turned into exactly one
ChangeRecord. Which removal markers count as removals is an explicit
RemovalPolicy chosen by the caller.
"""

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

from guest_sync.sync.member import Added, ChangeRecord, Removed

REMOVED_KEY = "@removed"
ODATA_TYPE_KEY = "@odata.type"
DELETED_REASON = "deleted"

logger = logging.getLogger(__name__)


class RemovalPolicy(str, Enum):
    """Which removal markers classify an entry as Removed."""

    ANY_MARKER = "any_marker"  # any @removed marker
    DELETED_ONLY = "deleted_only"  # only @removed with reason "deleted"


class MembershipDiffEngine:
    """
    Classifies raw delta entries into Added / Removed records.

    Usage:
        engine = MembershipDiffEngine(RemovalPolicy.ANY_MARKER)
        records = engine.classify(raw_entries)
        added, removed = engine.partition(records)
    """

    def __init__(self, removal_policy: RemovalPolicy):
        self.removal_policy = RemovalPolicy(removal_policy)

    def classify_entry(self, entry: dict[str, Any]) -> ChangeRecord:
        """
        Classify a single raw entry.

        Raises:
            ValueError: If the entry has no member id
        """
        member_id = entry.get("id")
        if not member_id:
            raise ValueError(f"Delta entry without id: {entry!r}")

        object_type = entry.get(ODATA_TYPE_KEY)
        marker = entry.get(REMOVED_KEY)

        if marker is None:
            return Added(member_id=member_id, object_type=object_type)

        reason = marker.get("reason") if isinstance(marker, dict) else None

        if (
            self.removal_policy is RemovalPolicy.DELETED_ONLY
            and reason != DELETED_REASON
        ):
            logger.warning(
                f"Member {member_id} carries removal reason {reason!r}; "
                f"treated as added under the deleted_only policy"
            )
            return Added(member_id=member_id, object_type=object_type)

        return Removed(member_id=member_id, reason=reason, object_type=object_type)

    def classify(self, raw_entries: Iterable[dict[str, Any]]) -> list[ChangeRecord]:
        """
        Classify raw entries, preserving feed order.

        Args:
            raw_entries: Member entries accumulated by the delta fetcher

        Returns:
            One ChangeRecord per input entry
        """
        return [self.classify_entry(entry) for entry in raw_entries]

    @staticmethod
    def partition(
        records: Iterable[ChangeRecord],
    ) -> tuple[list[Added], list[Removed]]:
        """Split classified records into (added, removed), preserving order."""
        added: list[Added] = []
        removed: list[Removed] = []
        for record in records:
            if isinstance(record, Removed):
                removed.append(record)
            else:
                added.append(record)
        return added, removed

    def __repr__(self) -> str:
        return f"MembershipDiffEngine(removal_policy={self.removal_policy.value})"
