"""
SQLite storage handle for the access-control core.

One AuthDatabase instance is created per process and passed explicitly to
every component. All reads and writes go through ``transaction()``.
"""

import sqlite3
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from .errors import StorageUnavailable


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        first_name TEXT,
        last_name TEXT,
        description TEXT,
        avatar TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        deleted_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT,
        created_at TEXT NOT NULL
    )
    """,
    # Foreign keys carry no ON DELETE CASCADE: the owning component removes
    # dependents explicitly, and the store rejects a delete that skipped one.
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        role_id INTEGER NOT NULL REFERENCES roles(id),
        created_at TEXT NOT NULL,
        UNIQUE (user_id, role_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS role_permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        role_id INTEGER NOT NULL REFERENCES roles(id),
        permission_id INTEGER NOT NULL REFERENCES permissions(id),
        created_at TEXT NOT NULL,
        UNIQUE (role_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_permissions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        permission_id INTEGER NOT NULL REFERENCES permissions(id),
        created_at TEXT NOT NULL,
        UNIQUE (user_id, permission_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        token TEXT NOT NULL,
        label TEXT,
        created_at TEXT NOT NULL,
        last_used_at TEXT,
        UNIQUE (user_id, token)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id),
        session_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        last_activity TEXT NOT NULL,
        expires_at TEXT,
        UNIQUE (user_id, session_id)
    )
    """,
    # Indexes for performance
    "CREATE INDEX IF NOT EXISTS idx_user_roles_role ON user_roles(role_id)",
    "CREATE INDEX IF NOT EXISTS idx_role_permissions_permission ON role_permissions(permission_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_permissions_permission ON user_permissions(permission_id)",
    "CREATE INDEX IF NOT EXISTS idx_user_tokens_token ON user_tokens(token)",
    "CREATE INDEX IF NOT EXISTS idx_user_sessions_session ON user_sessions(session_id)",
)


TABLES = (
    "users",
    "roles",
    "permissions",
    "user_roles",
    "role_permissions",
    "user_permissions",
    "user_tokens",
    "user_sessions",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a timestamp as fixed-width UTC text.

    Stored timestamps are compared as text, so every value is converted to
    UTC first. Naive datetimes are taken to be UTC already.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def unique_violation(error: sqlite3.IntegrityError) -> Optional[str]:
    """
    Return the column named by a UNIQUE constraint failure.

    SQLite reports these as "UNIQUE constraint failed: users.email" (or a
    comma-separated list for composite keys). Returns None for any other
    integrity error, such as a foreign key violation.
    """
    message = str(error)
    prefix = "UNIQUE constraint failed: "
    if not message.startswith(prefix):
        return None
    first = message[len(prefix):].split(",")[0].strip()
    return first.split(".")[-1]


class AuthDatabase:
    """
    Thread-safe storage handle.

    Every call to ``transaction()`` opens a fresh connection, so instances
    can be shared between threads. Write transactions are serialized
    in-process with an RLock and across processes with BEGIN IMMEDIATE;
    read transactions run concurrently.
    """

    def __init__(self, db_path: Path, busy_timeout: float = 5.0):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait for a competing writer

        Raises:
            StorageUnavailable: If the file cannot be opened or initialized
        """
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._lock = threading.RLock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            logger.error(f"Cannot open database {self.db_path}: {e}")
            raise StorageUnavailable(f"cannot open database: {e}") from e
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            logger.error(f"Cannot initialize database {self.db_path}: {e}")
            raise StorageUnavailable(f"cannot initialize database: {e}") from e
        finally:
            conn.close()

        with self.transaction(write=True) as conn:
            for statement in SCHEMA:
                conn.execute(statement)

        logger.info(f"Auth database initialized: {self.db_path}")

    @contextmanager
    def transaction(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside a single transaction.

        Commits when the block exits normally and rolls back on any
        exception. Exceptions raised by the block itself pass through;
        sqlite errors that escape the block are raised as StorageUnavailable.

        Args:
            write: Take the writer lock and begin an IMMEDIATE transaction

        Yields:
            Open connection with ``sqlite3.Row`` rows
        """
        with self._lock if write else nullcontext():
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                logger.error(f"Transaction rolled back: {e}")
                raise StorageUnavailable(str(e)) from e
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.rollback()

    def count(self, table: str) -> int:
        """Row count of one of the TABLES."""
        if table not in TABLES:
            raise ValueError(f"unknown table: {table}")
        with self.transaction() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
