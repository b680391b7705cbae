"""
guest_sync.storage - Sync state persistence

SQLite sync database and the resume cursor stores built on it.
"""

from guest_sync.storage.cursor_store import (
    CursorStore,
    DatabaseCursorStore,
    FileCursorStore,
    SyncCursor,
)
from guest_sync.storage.db import StorageError, SyncDatabase

__all__ = [
    "CursorStore",
    "DatabaseCursorStore",
    "FileCursorStore",
    "StorageError",
    "SyncCursor",
    "SyncDatabase",
]
