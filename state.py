"""
Persistent sync state in SQLite: batch cursors, batch locks and the
Community group -> mirror group correspondence table
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from errors import CursorStoreError


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS cursors (
    identifier TEXT PRIMARY KEY,
    phase INTEGER NOT NULL,
    page_offset INTEGER NOT NULL,
    page_size INTEGER NOT NULL,
    total INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS locks (
    identifier TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS group_mappings (
    community_group_id INTEGER PRIMARY KEY,
    member_group_id INTEGER NOT NULL,
    acl_group_id INTEGER NOT NULL
);
"""


class StateStore:
    """
    SQLite database shared by every invocation of the sync.

    The connection runs in autocommit mode; read-modify-write sections open
    an explicit IMMEDIATE transaction so two processes never interleave.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        try:
            self.conn = sqlite3.connect(path, isolation_level=None, timeout=30)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise CursorStoreError(f"Cannot open state database {path}: {e}") from e
        logger.debug(f"Opened state database {path}")

    def close(self):
        self.conn.close()

    @contextmanager
    def transaction(self):
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise CursorStoreError(f"Cannot lock state database: {e}") from e
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    def _execute(self, query: str, params=()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(query, params)
        except sqlite3.Error as e:
            raise CursorStoreError(f"State database error: {e}") from e

    # Cursors

    def cursor_get(self, identifier: str) -> Optional[Dict]:
        row = self._execute(
            "SELECT phase, page_offset, page_size, total FROM cursors WHERE identifier = ?",
            (identifier,),
        ).fetchone()
        return dict(row) if row else None

    def cursor_put(self, identifier: str, phase: int, offset: int,
                   page_size: int, total: int) -> None:
        # One statement so phase and offset always change together
        self._execute(
            "INSERT INTO cursors (identifier, phase, page_offset, page_size, total, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(identifier) DO UPDATE SET phase = excluded.phase, "
            "page_offset = excluded.page_offset, page_size = excluded.page_size, "
            "total = excluded.total, updated_at = excluded.updated_at",
            (identifier, phase, offset, page_size, total, time.time()),
        )

    def cursor_delete(self, identifier: str) -> bool:
        return self._execute(
            "DELETE FROM cursors WHERE identifier = ?", (identifier,)
        ).rowcount > 0

    def cursor_identifiers(self) -> List[str]:
        rows = self._execute("SELECT identifier FROM cursors ORDER BY identifier").fetchall()
        return [row["identifier"] for row in rows]

    # Locks

    def lock_acquire(self, identifier: str, owner: str, timeout: float) -> bool:
        """Take the lock for a batch identifier; a lock older than timeout is stale."""
        now = time.time()
        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT owner, acquired_at FROM locks WHERE identifier = ?",
                    (identifier,),
                ).fetchone()
                if row is not None:
                    age = now - row["acquired_at"]
                    if age < timeout:
                        logger.debug(f"Batch {identifier} is locked by {row['owner']}")
                        return False
                    logger.warning(
                        f"Taking over stale lock on batch {identifier} held by "
                        f"{row['owner']} for {int(age)}s"
                    )
                conn.execute(
                    "INSERT OR REPLACE INTO locks (identifier, owner, acquired_at) VALUES (?, ?, ?)",
                    (identifier, owner, now),
                )
                return True
        except sqlite3.Error as e:
            raise CursorStoreError(f"Cannot acquire lock for {identifier}: {e}") from e

    def lock_release(self, identifier: str, owner: str) -> None:
        self._execute(
            "DELETE FROM locks WHERE identifier = ? AND owner = ?", (identifier, owner)
        )

    # Group correspondence

    def mapping_get(self, community_group_id: int) -> Optional[Tuple[int, int]]:
        row = self._execute(
            "SELECT member_group_id, acl_group_id FROM group_mappings WHERE community_group_id = ?",
            (community_group_id,),
        ).fetchone()
        if row is None:
            return None
        return row["member_group_id"], row["acl_group_id"]

    def mapping_put(self, community_group_id: int, member_group_id: int, acl_group_id: int) -> None:
        self._execute(
            "INSERT OR REPLACE INTO group_mappings (community_group_id, member_group_id, acl_group_id) "
            "VALUES (?, ?, ?)",
            (community_group_id, member_group_id, acl_group_id),
        )

    def mapping_delete(self, community_group_id: int) -> None:
        self._execute(
            "DELETE FROM group_mappings WHERE community_group_id = ?", (community_group_id,)
        )

    def mapping_by_directory_group(self, group_id: int) -> Optional[int]:
        """Community group id mirrored by the given Directory group, if mapped."""
        row = self._execute(
            "SELECT community_group_id FROM group_mappings "
            "WHERE member_group_id = ? OR acl_group_id = ?",
            (group_id, group_id),
        ).fetchone()
        return row["community_group_id"] if row else None
