"""SQLite event store for heartbeat-rollup.

This module is the reference implementation of the event store the summary
engine reads from. Ingestion itself happens elsewhere; the write helpers here
exist so the store can be seeded and tested.

Database Schema:
    users table:
        - id: Canonical identity (primary key)
        - created_at: When the account was created
    user_aliases table:
        - alias: Alternate identity (primary key, so it maps to one user)
        - user_id: Canonical identity it resolves to
    value_aliases table:
        - user_id, dimension, alias: Key (one canonical value per alias)
        - value: Canonical dimension value (e.g. project name)
    heartbeats table:
        - id: Primary key (autoincrement, doubles as arrival order)
        - user_id: Owning identity (indexed with timestamp)
        - timestamp: ISO-8601 text with microseconds, compared lexically
        - project, language, editor, machine, category: Context tags

Example:
    >>> storage = HeartbeatStorage("/tmp/heartbeats.db")
    >>> storage.create_user("alice")
    >>> storage.save_heartbeat(Heartbeat("alice", datetime.now(), project="foo"))
    >>> rows = storage.read_events("alice", start, end)
"""

import logging
import sqlite3
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import AggregationTimeoutError, StoreUnavailableError
from .models import Heartbeat

logger = logging.getLogger(__name__)

# Number of SQLite VM instructions between deadline checks
PROGRESS_STEPS = 1000


def format_timestamp(ts: datetime) -> str:
    """Render a timestamp so that text order equals time order.

    Aware datetimes are converted to naive local time first.
    """
    if ts.tzinfo is not None:
        ts = ts.astimezone().replace(tzinfo=None)
    return ts.isoformat(timespec="microseconds")


class HeartbeatStorage:
    """SQLite database interface for heartbeats and identities.

    Attributes:
        db_path (str): Absolute path to the SQLite database file
        read_timeout (float): Default deadline in seconds for read_events,
            or None for no deadline
    """

    def __init__(self, db_path: str = None, read_timeout: Optional[float] = None):
        """Initialize HeartbeatStorage and make sure the schema exists.

        Args:
            db_path: Path to SQLite database file. If None, uses
                ~/heartbeat-rollup-data/heartbeats.db
            read_timeout: Default deadline for read_events in seconds

        Raises:
            StoreUnavailableError: If the data directory or database cannot
                be created
        """
        if db_path is None:
            db_path = Path.home() / "heartbeat-rollup-data" / "heartbeats.db"
        db_path = Path(db_path).expanduser()
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise StoreUnavailableError(
                f"Permission denied creating data directory {db_path.parent}: {e}"
            ) from e

        self.db_path = str(db_path)
        self.read_timeout = read_timeout
        self.init_db()

    @classmethod
    def from_config(cls, storage_config) -> "HeartbeatStorage":
        return cls(storage_config.db_path, read_timeout=storage_config.read_timeout_seconds)

    @contextmanager
    def get_connection(self, timeout: Optional[float] = None):
        """Context manager for SQLite database connections.

        Args:
            timeout: Seconds to wait on a locked database (sqlite default 5)

        Yields:
            sqlite3.Connection with Row factory enabled

        Raises:
            StoreUnavailableError: If the database cannot be opened or queried
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=timeout if timeout is not None else 5.0)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
            finally:
                conn.close()
        except (sqlite3.OperationalError, sqlite3.DatabaseError, PermissionError) as e:
            logger.error(f"Database access error for {self.db_path}: {e}")
            raise StoreUnavailableError(f"Database access error for {self.db_path}: {e}") from e

    def init_db(self):
        """Create tables and indexes if they don't exist."""
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_aliases (
                    alias TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS value_aliases (
                    user_id TEXT NOT NULL REFERENCES users(id),
                    dimension TEXT NOT NULL,
                    alias TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (user_id, dimension, alias)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS heartbeats (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    project TEXT,
                    language TEXT,
                    editor TEXT,
                    machine TEXT,
                    category TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_heartbeats_user_time
                ON heartbeats(user_id, timestamp)
            """)
            conn.commit()

    # =========================================================================
    # Identity Methods
    # =========================================================================

    def create_user(self, user_id: str) -> None:
        """Register a canonical identity. Existing users are left untouched."""
        with self.get_connection() as conn:
            conn.execute("INSERT OR IGNORE INTO users (id) VALUES (?)", (user_id,))
            conn.commit()

    def add_alias(self, user_id: str, alias: str) -> None:
        """Point an alternate identity at a canonical one.

        Raises:
            ValueError: If the alias already belongs to another user or is
                itself a canonical identity.
        """
        with self.get_connection() as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (alias,)).fetchone():
                raise ValueError(f"Alias {alias!r} is already a canonical identity")
            row = conn.execute(
                "SELECT user_id FROM user_aliases WHERE alias = ?", (alias,)
            ).fetchone()
            if row and row["user_id"] != user_id:
                raise ValueError(f"Alias {alias!r} already belongs to {row['user_id']!r}")
            conn.execute(
                "INSERT OR IGNORE INTO user_aliases (alias, user_id) VALUES (?, ?)",
                (alias, user_id)
            )
            conn.commit()

    def add_value_alias(self, user_id: str, dimension: str, alias: str, value: str) -> None:
        """Map a dimension value onto a canonical one for a single user.

        Example:
            >>> storage.add_value_alias("alice", "project", "wakapi-mobile", "wakapi")
        """
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO value_aliases (user_id, dimension, alias, value)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, dimension, alias, value)
            )
            conn.commit()

    def get_identity_map(self) -> Dict[str, Set[str]]:
        """Return every canonical identity with the set of its aliases."""
        with self.get_connection() as conn:
            identities: Dict[str, Set[str]] = {
                row["id"]: set() for row in conn.execute("SELECT id FROM users")
            }
            for row in conn.execute("SELECT alias, user_id FROM user_aliases"):
                identities.setdefault(row["user_id"], set()).add(row["alias"])
            return identities

    def get_value_aliases(self) -> Dict[str, Dict[Tuple[str, str], str]]:
        """Return ``{user_id: {(dimension, alias): value}}``."""
        result: Dict[str, Dict[Tuple[str, str], str]] = defaultdict(dict)
        with self.get_connection() as conn:
            for row in conn.execute("SELECT user_id, dimension, alias, value FROM value_aliases"):
                result[row["user_id"]][(row["dimension"], row["alias"])] = row["value"]
        return dict(result)

    # =========================================================================
    # Heartbeat Methods
    # =========================================================================

    def save_heartbeat(self, heartbeat: Heartbeat) -> int:
        """Append one heartbeat.

        Returns:
            ID of the stored row.
        """
        with self.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO heartbeats
                (user_id, timestamp, project, language, editor, machine, category)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                self._heartbeat_params(heartbeat)
            )
            conn.commit()
            return cursor.lastrowid

    def save_heartbeats(self, heartbeats: Iterable[Heartbeat]) -> int:
        """Append many heartbeats in one transaction.

        Returns:
            Number of rows written.
        """
        params = [self._heartbeat_params(hb) for hb in heartbeats]
        with self.get_connection() as conn:
            conn.executemany(
                """
                INSERT INTO heartbeats
                (user_id, timestamp, project, language, editor, machine, category)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                params
            )
            conn.commit()
        return len(params)

    @staticmethod
    def _heartbeat_params(heartbeat: Heartbeat) -> tuple:
        return (
            heartbeat.identity,
            format_timestamp(heartbeat.timestamp),
            heartbeat.project,
            heartbeat.language,
            heartbeat.editor,
            heartbeat.machine,
            heartbeat.category,
        )

    def read_events(
        self,
        identity: str,
        start: datetime,
        end: datetime,
        timeout: Optional[float] = None
    ) -> List[Dict]:
        """Get all heartbeats of one identity with timestamp in ``[start, end)``.

        Rows come back in arrival order, not time order. Timestamps are
        returned as stored (text); callers parse and validate them.

        Args:
            identity: Canonical identity.
            start: Inclusive lower bound.
            end: Exclusive upper bound.
            timeout: Deadline in seconds; falls back to the storage default.

        Returns:
            List of heartbeat dicts with keys identity, timestamp, project,
            language, editor, machine, category.

        Raises:
            AggregationTimeoutError: If the read outlives its deadline.
            StoreUnavailableError: If the database cannot be queried.
        """
        timeout = timeout if timeout is not None else self.read_timeout

        with self.get_connection(timeout=timeout) as conn:
            if timeout is not None:
                deadline = time.monotonic() + timeout
                conn.set_progress_handler(
                    lambda: 1 if time.monotonic() > deadline else 0, PROGRESS_STEPS
                )
            try:
                cursor = conn.execute(
                    """
                    SELECT user_id AS identity, timestamp, project, language,
                           editor, machine, category
                    FROM heartbeats
                    WHERE user_id = ?
                      AND timestamp >= ?
                      AND timestamp < ?
                    ORDER BY id ASC
                    """,
                    (identity, format_timestamp(start), format_timestamp(end))
                )
                return [dict(row) for row in cursor.fetchall()]
            except sqlite3.OperationalError as e:
                if timeout is not None and "interrupt" in str(e).lower():
                    raise AggregationTimeoutError(
                        f"Reading heartbeats for {identity} exceeded {timeout}s"
                    ) from e
                raise
