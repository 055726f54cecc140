"""
Database operations for the CTF platform.

The DatabaseManager owns the SQLite schema and hands out connections and
transactions to the stores. Connections run in autocommit mode; multi-step
writes go through transaction(), which takes the write lock up front with
BEGIN IMMEDIATE so concurrent writers queue instead of interleaving.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import aiosqlite
import structlog

from .errors import StorageFault

logger = structlog.get_logger(__name__)


# Largest value an SQLite INTEGER column can hold
SQLITE_MAX_INTEGER = 2**63 - 1


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class DatabaseManager:
    """Manages the SQLite schema, connections and transactions."""

    def __init__(
        self,
        db_path: str,
        config: Any,
    ) -> None:
        self.db_path = db_path
        self.config = config
        self.busy_timeout = float(config.get("database", "busy_timeout") or 5.0)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection in autocommit mode.

        Storage errors raised while the connection is open surface as StorageFault.

        @return: Async context manager yielding an aiosqlite connection
        """
        try:
            async with aiosqlite.connect(
                self.db_path, timeout=self.busy_timeout, isolation_level=None
            ) as db:
                db.row_factory = aiosqlite.Row
                yield db
        except aiosqlite.Error as e:
            logger.error("storage_fault", db_path=self.db_path, error=str(e))
            raise StorageFault("Storage temporarily unavailable, please retry") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block inside one write transaction.

        Commits when the block finishes, rolls back on any exception so a
        partially applied change is never visible.

        @return: Async context manager yielding the transaction's connection
        """
        async with self.connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    @asynccontextmanager
    async def use(
        self,
        conn: Optional[aiosqlite.Connection] = None,
    ) -> AsyncIterator[aiosqlite.Connection]:
        """
        Reuse a caller's connection or open a fresh one.

        @param conn: Connection of an enclosing transaction, if any
        @return: Async context manager yielding a connection
        """
        if conn is not None:
            yield conn
        else:
            async with self.connect() as db:
                yield db

    async def init_db(self) -> None:
        """
        Initialize the SQLite database with schema and indexes.

        Creates tables, indexes, and performs schema migrations if needed.
        """
        async with self.connect() as db:
            # Enable WAL mode for better concurrent access
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    score INTEGER NOT NULL DEFAULT 0,
                    challenges_solved INTEGER NOT NULL DEFAULT 0,
                    is_email_verified INTEGER NOT NULL DEFAULT 0,
                    email_verification_token TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS challenges (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    difficulty TEXT NOT NULL,
                    points INTEGER NOT NULL CHECK (points > 0),
                    flag TEXT NOT NULL,
                    category TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    attachment TEXT,
                    download_url TEXT,
                    author TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # No foreign keys: ledger rows outlive deleted users and challenges
            await db.execute("""
                CREATE TABLE IF NOT EXISTS submissions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    challenge_id INTEGER NOT NULL,
                    flag_text TEXT NOT NULL,
                    is_correct INTEGER NOT NULL,
                    submitted_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    token_hash TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_users_verification_token
                ON users(email_verification_token)
                WHERE email_verification_token IS NOT NULL
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_submissions_user
                ON submissions(user_id, challenge_id)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_submissions_challenge
                ON submissions(challenge_id, submitted_at ASC, id ASC)
            """)
            # At most one correct submission per user and challenge
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_submissions_one_solve
                ON submissions(user_id, challenge_id)
                WHERE is_correct = 1
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_user
                ON sessions(user_id)
            """)

            await self._migrate_schema(db)

        logger.info("database_initialized", db_path=self.db_path)

    async def _migrate_schema(
        self,
        db: Any,
    ) -> None:
        """
        Handle database schema migrations.

        @param db: Active database connection
        """
        migrations = (
            ("challenges", "challenge_site_url", "TEXT"),
            ("submissions", "points_awarded", "INTEGER NOT NULL DEFAULT 0"),
        )

        for table, column, definition in migrations:
            cursor = await db.execute(f"PRAGMA table_info({table})")
            columns = await cursor.fetchall()
            column_names = [column_info[1] for column_info in columns]

            if column not in column_names:
                await db.execute(
                    f"ALTER TABLE {table} ADD COLUMN {column} {definition}"
                )
                logger.info("schema_migrated", table=table, column=column)
