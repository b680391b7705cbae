"""
Tests for the cursor stores.

Both backends share the same contract: a cursor round-trips, an empty
token never replaces a stored one, and unreadable storage raises
StorageError.
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from guest_sync.storage.cursor_store import (
    DatabaseCursorStore,
    FileCursorStore,
    SyncCursor,
)
from guest_sync.storage.db import StorageError, SyncDatabase


@pytest.fixture
def database_store():
    db = SyncDatabase(":memory:")
    db.initialize()
    return DatabaseCursorStore(db)


@pytest.fixture
def file_store(tmp_path):
    return FileCursorStore(tmp_path / "state" / "cursors.json")


@pytest.fixture(params=["database", "file"])
def store(request, database_store, file_store):
    return database_store if request.param == "database" else file_store


class TestCursorContract:
    """Behaviour shared by every backend."""

    def test_missing_cursor_is_none(self, store):
        """Test that a never-synced group has no cursor."""
        assert store.get("g1") is None

    def test_round_trip(self, store):
        """Test that a stored token is returned unchanged."""
        assert store.put("g1", "https://delta/tok-1") is True

        cursor = store.get("g1")
        assert isinstance(cursor, SyncCursor)
        assert cursor.group_id == "g1"
        assert cursor.token == "https://delta/tok-1"
        assert cursor.updated_at is not None

    def test_put_overwrites(self, store):
        """Test that a later token replaces the earlier one."""
        store.put("g1", "tok-1")
        store.put("g1", "tok-2")

        assert store.get("g1").token == "tok-2"

    @pytest.mark.parametrize("empty", [None, ""])
    def test_empty_token_never_overwrites(self, store, empty):
        """Test that an empty token is ignored and the old cursor kept."""
        store.put("g1", "tok-1")

        assert store.put("g1", empty) is False
        assert store.get("g1").token == "tok-1"

    def test_empty_token_on_missing_cursor(self, store):
        """Test that an empty token does not create a cursor."""
        assert store.put("g1", None) is False
        assert store.get("g1") is None

    def test_groups_are_independent(self, store):
        """Test that cursors are keyed by group."""
        store.put("g1", "tok-a")
        store.put("g2", "tok-b")

        assert store.get("g1").token == "tok-a"
        assert store.get("g2").token == "tok-b"

    def test_clear(self, store):
        """Test that clear removes only the named cursor."""
        store.put("g1", "tok-a")
        store.put("g2", "tok-b")

        assert store.clear("g1") is True
        assert store.get("g1") is None
        assert store.get("g2").token == "tok-b"
        assert store.clear("g1") is False

    def test_list_cursors(self, store):
        """Test listing cursors in group order."""
        store.put("g2", "tok-b")
        store.put("g1", "tok-a")

        assert [c.group_id for c in store.list_cursors()] == ["g1", "g2"]


class TestDatabaseCursorStore:
    """Tests specific to the SQLite backend."""

    def test_write_failure_raises_storage_error(self):
        """Test that a failed write surfaces as StorageError."""
        db = MagicMock()
        db.update_sync_state.side_effect = StorageError("disk full")
        store = DatabaseCursorStore(db)

        with pytest.raises(StorageError):
            store.put("g1", "tok-1")


class TestFileCursorStore:
    """Tests specific to the JSON file backend."""

    def test_document_layout(self, file_store):
        """Test that the document is keyed by group id."""
        file_store.put("g1", "tok-1")

        data = json.loads(file_store.path.read_text(encoding="utf-8"))
        assert data["g1"]["token"] == "tok-1"
        assert "updated_at" in data["g1"]

    def test_corrupt_file_raises(self, file_store):
        """Test that unparseable JSON raises StorageError."""
        file_store.path.parent.mkdir(parents=True)
        file_store.path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageError):
            file_store.get("g1")

    def test_put_replaces_corrupt_file(self, file_store):
        """Test that a write over a corrupt file starts a new document."""
        file_store.path.parent.mkdir(parents=True)
        file_store.path.write_text("{not json", encoding="utf-8")

        assert file_store.put("g1", "tok-1") is True

        assert file_store.get("g1").token == "tok-1"
        aside = file_store.path.with_name("cursors.json.corrupt")
        assert aside.read_text(encoding="utf-8") == "{not json"

    def test_clear_on_corrupt_file(self, file_store):
        """Test that clearing over a corrupt file reports nothing removed."""
        file_store.path.parent.mkdir(parents=True)
        file_store.path.write_text("[]", encoding="utf-8")

        assert file_store.clear("g1") is False
        assert file_store.get("g1") is None

    def test_non_object_document_raises(self, file_store):
        """Test that a JSON document other than an object raises StorageError."""
        file_store.path.parent.mkdir(parents=True)
        file_store.path.write_text("[]", encoding="utf-8")

        with pytest.raises(StorageError):
            file_store.get("g1")

    def test_failed_replace_keeps_previous_cursor(self, file_store):
        """Test that a write failing at the replace step leaves the old file."""
        file_store.put("g1", "tok-1")

        with patch(
            "guest_sync.storage.cursor_store.os.replace",
            side_effect=OSError("read-only"),
        ):
            with pytest.raises(StorageError):
                file_store.put("g1", "tok-2")

        assert file_store.get("g1").token == "tok-1"
        leftovers = [p for p in file_store.path.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_entry_without_timestamp(self, file_store):
        """Test that a hand-written entry without updated_at still loads."""
        file_store.path.parent.mkdir(parents=True)
        file_store.path.write_text(json.dumps({"g1": {"token": "tok-1"}}))

        cursor = file_store.get("g1")
        assert cursor.token == "tok-1"
        assert cursor.updated_at is None
