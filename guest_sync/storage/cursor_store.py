"""
Resume cursor persistence.

A cursor is the delta link returned by the last fully drained page walk for
a group. It is only ever replaced by another non-empty delta link, and each
write either lands completely or leaves the previous cursor in place.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from guest_sync.storage.db import StorageError, SyncDatabase

logger = logging.getLogger(__name__)


@dataclass
class SyncCursor:
    """Stored resume token for one group."""

    group_id: str
    token: Optional[str]
    updated_at: Optional[datetime] = None


class CursorStore(ABC):
    """
    Persists one opaque resume token per group.

    Subclasses implement _read, _write and clear; the empty-token guard
    lives here so no backend can overwrite a valid cursor with nothing.
    """

    @abstractmethod
    def _read(self, group_id: str) -> Optional[SyncCursor]: ...

    @abstractmethod
    def _write(self, group_id: str, token: str) -> None: ...

    @abstractmethod
    def clear(self, group_id: str) -> bool:
        """Drop the stored cursor. Returns True if one existed."""

    @abstractmethod
    def list_cursors(self) -> list[SyncCursor]:
        """All stored cursors, ordered by group id."""

    def get(self, group_id: str) -> Optional[SyncCursor]:
        """
        Return the stored cursor, or None when the group was never synced.

        Raises:
            StorageError: If the backing storage is unreadable or corrupt
        """
        cursor = self._read(group_id)
        if cursor is None or not cursor.token:
            return None
        return cursor

    def put(self, group_id: str, token: Optional[str]) -> bool:
        """
        Store a new token for a group.

        An empty token is ignored with a warning and the existing cursor is
        kept.

        Returns:
            True if the token was written

        Raises:
            StorageError: If the write failed (the previous cursor is kept)
        """
        if not token:
            logger.warning(
                f"Refusing to store an empty cursor for group {group_id}; "
                f"keeping the previous one"
            )
            return False

        self._write(group_id, token)
        logger.debug(f"Stored cursor for group {group_id}")
        return True


class DatabaseCursorStore(CursorStore):
    """CursorStore backed by the sync_state table of a SyncDatabase."""

    def __init__(self, database: SyncDatabase):
        self.database = database

    def _read(self, group_id: str) -> Optional[SyncCursor]:
        state = self.database.get_sync_state(group_id)
        if state is None:
            return None
        return SyncCursor(
            group_id=group_id,
            token=state["delta_link"],
            updated_at=state["last_sync_at"],
        )

    def _write(self, group_id: str, token: str) -> None:
        self.database.update_sync_state(group_id, token)

    def clear(self, group_id: str) -> bool:
        return self.database.clear_sync_state(group_id)

    def list_cursors(self) -> list[SyncCursor]:
        return [
            SyncCursor(
                group_id=state["group_id"],
                token=state["delta_link"],
                updated_at=state["last_sync_at"],
            )
            for state in self.database.list_sync_states()
            if state["delta_link"]
        ]

    def __repr__(self) -> str:
        return f"DatabaseCursorStore(db_path={self.database.db_path!r})"


class FileCursorStore(CursorStore):
    """
    CursorStore backed by a single JSON document keyed by group id.

    Document layout::

        {
            "<group_id>": {
                "token": "https://graph.microsoft.com/v1.0/groups/delta?$deltatoken=...",
                "updated_at": "2024-05-01T12:00:00+00:00"
            }
        }

    Writes go to a temporary file in the same directory which then replaces
    the document with os.replace.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cursor file {self.path} is unreadable: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(
                f"Cursor file {self.path} must contain a JSON object, "
                f"got {type(data).__name__}"
            )
        return data

    def _load_for_update(self) -> dict[str, Any]:
        """
        Load the document before changing it.

        A corrupt document is renamed to ``<name>.corrupt`` and replaced by an
        empty one, so the next write repairs the store.
        """
        try:
            return self._load()
        except StorageError as e:
            logger.error(f"{e}; starting a new cursor document")

        aside = self.path.with_name(f"{self.path.name}.corrupt")
        try:
            os.replace(self.path, aside)
            logger.error(f"Moved unreadable cursor file to {aside}")
        except OSError as e:
            logger.warning(f"Could not move {self.path} aside: {e}")
        return {}

    def _save(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write cursor file {self.path}: {e}") from e

    @staticmethod
    def _cursor_from_entry(group_id: str, entry: Any) -> Optional[SyncCursor]:
        if not isinstance(entry, dict):
            return None

        updated_at = entry.get("updated_at")
        try:
            parsed = datetime.fromisoformat(updated_at) if updated_at else None
        except (TypeError, ValueError):
            parsed = None

        return SyncCursor(
            group_id=group_id, token=entry.get("token"), updated_at=parsed
        )

    def _read(self, group_id: str) -> Optional[SyncCursor]:
        return self._cursor_from_entry(group_id, self._load().get(group_id))

    def _write(self, group_id: str, token: str) -> None:
        data = self._load_for_update()
        data[group_id] = {
            "token": token,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._save(data)

    def clear(self, group_id: str) -> bool:
        data = self._load_for_update()
        if group_id not in data:
            return False
        del data[group_id]
        self._save(data)
        return True

    def list_cursors(self) -> list[SyncCursor]:
        """All stored cursors, ordered by group id."""
        data = self._load()
        cursors = [
            self._cursor_from_entry(group_id, data[group_id])
            for group_id in sorted(data)
        ]
        return [c for c in cursors if c is not None and c.token]

    def __repr__(self) -> str:
        return f"FileCursorStore(path={str(self.path)!r})"
