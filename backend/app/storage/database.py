"""DuckDB connection and schema management for the relay.

The relay keeps all durable state in one embedded DuckDB file: direct
messages, the global message log and registered users. This module owns the
single connection and runs the versioned schema migrations exactly once when
the Database is created.

Database Schema:
    schema_version table:
        - version: Highest migration applied
        - applied_at: When it was applied (UTC)
    messages table:
        - id: Sequence-assigned primary key
        - sender_user_id / recipient_user_id: Conversation participants
        - content: Opaque message payload
        - timestamp: Client-supplied ISO-8601 string (ordering key)
        - message_type: 'text' or 'image'
        - pending: TRUE until delivered (or purged by age)
    global_messages table:
        - id, sender_user_id, sender_username, content, timestamp, message_type
    registered_users table:
        - user_id (primary key), username, registered_at, banned

Thread Safety:
    A DuckDB connection is NOT thread-safe. Every statement goes through
    execute()/fetchall()/fetchone(), which serialise access with a lock so the
    WebSocket handlers and the retention job can share one connection.
    Async callers go through run_blocking(), which runs the gateway call on
    the default executor so a slow statement never stalls the event loop.

Usage:
    db = Database.get_instance("relay.duckdb")
    rows = db.fetchall("SELECT * FROM messages WHERE pending = TRUE")
"""
import asyncio
import functools
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import duckdb

from app.errors import PersistenceError

logger = logging.getLogger(__name__)


async def run_blocking(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking gateway call on the default executor and await it."""
    return await asyncio.get_event_loop().run_in_executor(
        None, functools.partial(func, *args, **kwargs)
    )


# =============================================================================
# Migrations
# =============================================================================

_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TIMESTAMP NOT NULL
)
"""


def _create_base_tables(db: "Database") -> None:
    db.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
    db.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id                BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
            sender_user_id    VARCHAR NOT NULL,
            recipient_user_id VARCHAR NOT NULL,
            content           VARCHAR,
            timestamp         VARCHAR,
            message_type      VARCHAR DEFAULT 'text',
            pending           BOOLEAN DEFAULT TRUE
        )
    """)
    db.execute("""
        CREATE TABLE IF NOT EXISTS registered_users (
            user_id       VARCHAR PRIMARY KEY,
            username      VARCHAR,
            registered_at VARCHAR NOT NULL,
            banned        BOOLEAN DEFAULT FALSE
        )
    """)


def _add_delivery_and_profile_columns(db: "Database") -> None:
    # Databases created before these columns existed get them added here;
    # on a fresh database every check is a no-op.
    db.add_column_if_missing("messages", "message_type", "VARCHAR DEFAULT 'text'")
    db.add_column_if_missing("messages", "pending", "BOOLEAN DEFAULT TRUE")
    db.add_column_if_missing("registered_users", "username", "VARCHAR")
    db.add_column_if_missing("registered_users", "banned", "BOOLEAN DEFAULT FALSE")


def _create_global_messages(db: "Database") -> None:
    db.execute("CREATE SEQUENCE IF NOT EXISTS global_messages_seq START 1")
    db.execute("""
        CREATE TABLE IF NOT EXISTS global_messages (
            id              BIGINT DEFAULT nextval('global_messages_seq') PRIMARY KEY,
            sender_user_id  VARCHAR NOT NULL,
            sender_username VARCHAR,
            content         VARCHAR,
            timestamp       VARCHAR,
            message_type    VARCHAR DEFAULT 'text'
        )
    """)


def _create_indexes(db: "Database") -> None:
    # Only lookup columns are indexed; `pending` is updated in place and
    # DuckDB rewrites updates to indexed columns as delete+insert.
    db.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_recipient "
        "ON messages(recipient_user_id)"
    )
    db.execute(
        "CREATE INDEX IF NOT EXISTS idx_messages_pair "
        "ON messages(sender_user_id, recipient_user_id)"
    )


# Ordered (version, description, step). Append only; never renumber.
MIGRATIONS: List[Tuple[int, str, Callable[["Database"], None]]] = [
    (1, "base messages and registered_users tables", _create_base_tables),
    (2, "delivery and profile columns", _add_delivery_and_profile_columns),
    (3, "global message log", _create_global_messages),
    (4, "conversation indexes", _create_indexes),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


# =============================================================================
# Database
# =============================================================================


class Database:
    """Singleton owner of the relay's DuckDB connection.

    Attributes:
        _instance: Singleton instance.
        _db_path: Path to the DuckDB file (":memory:" for tests).
    """

    _instance: Optional["Database"] = None
    _db_path: str = "relay.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and bring its schema up to date.

        Args:
            db_path: Path to DuckDB file. Defaults to "relay.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._lock = threading.RLock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self.migrate()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Database":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    # -------------------------------------------------------------------------
    # Statement helpers
    # -------------------------------------------------------------------------

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        """Run a statement that returns nothing of interest."""
        with self._lock:
            try:
                self._get_connection().execute(sql, params or [])
            except duckdb.Error as exc:
                raise PersistenceError(str(exc)) from exc

    def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return every row as a column->value dict."""
        with self._lock:
            try:
                cursor = self._get_connection().execute(sql, params or [])
                rows = cursor.fetchall()
                columns = [col[0] for col in cursor.description or []]
            except duckdb.Error as exc:
                raise PersistenceError(str(exc)) from exc
        return [dict(zip(columns, row)) for row in rows]

    def fetchone(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Run a query and return the first row, or None."""
        rows = self.fetchall(sql, params)
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Schema management
    # -------------------------------------------------------------------------

    def column_exists(self, table: str, column: str) -> bool:
        row = self.fetchone(
            """
            SELECT COUNT(*) AS n FROM information_schema.columns
            WHERE table_name = ? AND column_name = ?
            """,
            [table, column],
        )
        return bool(row and row["n"])

    def add_column_if_missing(self, table: str, column: str, definition: str) -> bool:
        """Add a column unless it already exists. Returns True if added."""
        if self.column_exists(table, column):
            return False
        self.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
        logger.info("[Storage] Added column %s.%s", table, column)
        return True

    def schema_version(self) -> int:
        row = self.fetchone("SELECT MAX(version) AS version FROM schema_version")
        return int(row["version"]) if row and row["version"] is not None else 0

    def migrate(self) -> int:
        """Apply pending migrations in order. Returns the resulting version.

        Safe to call repeatedly; applied versions are skipped.
        """
        with self._lock:
            self.execute(_SCHEMA_VERSION_TABLE)
            current = self.schema_version()
            for version, description, step in MIGRATIONS:
                if version <= current:
                    continue
                logger.info("[Storage] Applying migration %d: %s", version, description)
                step(self)
                self.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    [version, datetime.now(timezone.utc).replace(tzinfo=None)],
                )
                current = version
        return current

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
