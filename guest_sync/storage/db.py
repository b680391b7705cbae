"""
SQLite database module for sync state management.

Provides persistent storage for per-group delta cursors and for the
invitations issued into partner tenants.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

# SQL Schema for cursor and invitation tables
SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_state (
    id INTEGER PRIMARY KEY,
    group_id TEXT NOT NULL,
    delta_link TEXT,
    last_sync_at TIMESTAMP,
    UNIQUE(group_id)
);

CREATE INDEX IF NOT EXISTS idx_sync_state_group ON sync_state(group_id);

CREATE TABLE IF NOT EXISTS invitations (
    id INTEGER PRIMARY KEY,
    partner_tenant_id TEXT NOT NULL,
    member_id TEXT NOT NULL,
    invited_email TEXT NOT NULL,
    invited_user_id TEXT,
    status TEXT NOT NULL DEFAULT 'invited',
    invited_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(partner_tenant_id, member_id)
);

CREATE INDEX IF NOT EXISTS idx_invitations_member
    ON invitations(partner_tenant_id, member_id);
"""


class StorageError(Exception):
    """Raised when sync state cannot be read or written."""

    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Explicit datetime round-trip for TIMESTAMP columns
sqlite3.register_adapter(datetime, lambda value: value.isoformat(" "))
sqlite3.register_converter(
    "TIMESTAMP", lambda value: datetime.fromisoformat(value.decode())
)


class SyncDatabase:
    """
    SQLite database manager for sync state.

    Provides methods for:
    - Managing the delta link (resume cursor) per group
    - Recording invitations issued per partner tenant

    Usage:
        db = SyncDatabase('/path/to/sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        In-memory databases share one connection so the schema persists
        across operations; file databases get a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:",
                    detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any error, so a failed write
        leaves the previous state untouched.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM sync_state")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """
        Initialize the database schema.

        Raises:
            StorageError: If the database file cannot be opened or is corrupt
        """
        try:
            with self.connection() as conn:
                conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialise sync database: {e}") from e

    # =========================================================================
    # Sync State Operations
    # =========================================================================

    def get_sync_state(self, group_id: str) -> Optional[dict[str, Any]]:
        """
        Get sync state for a group.

        Returns:
            Dictionary with delta_link and last_sync_at, or None if not found

        Raises:
            StorageError: If the database cannot be read
        """
        try:
            with self.connection() as conn:
                row = conn.execute(
                    "SELECT delta_link, last_sync_at FROM sync_state "
                    "WHERE group_id = ?",
                    (group_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read sync state for {group_id}: {e}") from e

        if row:
            return {
                "delta_link": row["delta_link"],
                "last_sync_at": row["last_sync_at"],
            }
        return None

    def update_sync_state(
        self,
        group_id: str,
        delta_link: str,
        last_sync_at: Optional[datetime] = None,
    ) -> None:
        """
        Update or insert the delta link for a group in a single transaction.

        Raises:
            StorageError: If the write fails (previous value is kept)
        """
        if last_sync_at is None:
            last_sync_at = _utcnow()

        try:
            with self.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO sync_state (group_id, delta_link, last_sync_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(group_id) DO UPDATE SET
                        delta_link = excluded.delta_link,
                        last_sync_at = excluded.last_sync_at
                    """,
                    (group_id, delta_link, last_sync_at),
                )
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to write sync state for {group_id}: {e}"
            ) from e

    def clear_sync_state(self, group_id: str) -> bool:
        """
        Remove the stored cursor for a group (forces full resync).

        Returns:
            True if a cursor was removed
        """
        try:
            with self.connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM sync_state WHERE group_id = ?", (group_id,)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to clear sync state for {group_id}: {e}"
            ) from e

    def list_sync_states(self) -> list[dict[str, Any]]:
        """List stored cursors for all groups, ordered by group id."""
        try:
            with self.connection() as conn:
                rows = conn.execute(
                    "SELECT group_id, delta_link, last_sync_at FROM sync_state "
                    "ORDER BY group_id"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list sync state: {e}") from e

        return [dict(row) for row in rows]

    # =========================================================================
    # Invitation Operations
    # =========================================================================

    def record_invitation(
        self,
        partner_tenant_id: str,
        member_id: str,
        invited_email: str,
        invited_user_id: Optional[str] = None,
        invited_at: Optional[datetime] = None,
    ) -> None:
        """Record (or refresh) an invitation issued for a member."""
        if invited_at is None:
            invited_at = _utcnow()

        try:
            with self.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO invitations
                        (partner_tenant_id, member_id, invited_email,
                         invited_user_id, invited_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(partner_tenant_id, member_id) DO UPDATE SET
                        invited_email = excluded.invited_email,
                        invited_user_id = excluded.invited_user_id,
                        invited_at = excluded.invited_at
                    """,
                    (
                        partner_tenant_id,
                        member_id,
                        invited_email,
                        invited_user_id,
                        invited_at,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to record invitation for {member_id}: {e}"
            ) from e

    def is_invited(self, partner_tenant_id: str, member_id: str) -> bool:
        """Check whether a member was already invited into a partner tenant."""
        try:
            with self.connection() as conn:
                row = conn.execute(
                    "SELECT 1 FROM invitations "
                    "WHERE partner_tenant_id = ? AND member_id = ?",
                    (partner_tenant_id, member_id),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(
                f"Failed to look up invitation for {member_id}: {e}"
            ) from e
        return row is not None

    def get_invitation_count(self, partner_tenant_id: Optional[str] = None) -> int:
        """Count recorded invitations, optionally for one partner tenant."""
        query = "SELECT COUNT(*) FROM invitations"
        params: tuple[str, ...] = ()
        if partner_tenant_id:
            query += " WHERE partner_tenant_id = ?"
            params = (partner_tenant_id,)

        try:
            with self.connection() as conn:
                return int(conn.execute(query, params).fetchone()[0])
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count invitations: {e}") from e
