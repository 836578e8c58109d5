"""
SQLite backend for users, chat sessions and messages.

One aiosqlite connection is shared by the whole process. Reads go straight
through; writes that touch more than one row run inside ``transaction()``
so they commit atomically and never interleave with another coroutine's
half-finished write on the same connection.

Schema:
  - users     (id, username UNIQUE, password_hash, created_at)
  - sessions  (id, user_id → users, title, created_at, updated_at)
  - messages  (seq AUTOINCREMENT, id UNIQUE, session_id → sessions, role,
               content, created_at, model, prompt/completion/total tokens)

``messages.seq`` is the canonical replay order: it increases with every
insert, so two messages written in the same millisecond still order
deterministically.

Usage:
    db = SQLiteDatabase("data/app.db")
    await db.connect()
    async with db.transaction() as conn:
        await conn.execute("INSERT INTO ...", params)
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            TEXT PRIMARY KEY,
    username      TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title       TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_user_updated
    ON sessions (user_id, updated_at DESC);

CREATE TABLE IF NOT EXISTS messages (
    seq                INTEGER PRIMARY KEY AUTOINCREMENT,
    id                 TEXT NOT NULL UNIQUE,
    session_id         TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    role               TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content            TEXT NOT NULL,
    created_at         TEXT NOT NULL,
    model              TEXT,
    prompt_tokens      INTEGER,
    completion_tokens  INTEGER,
    total_tokens       INTEGER
);
CREATE INDEX IF NOT EXISTS idx_messages_session_seq
    ON messages (session_id, seq);
"""


def new_id() -> str:
    """Generate a primary key (UUID4 string)."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    """Serialize a datetime for storage (ISO 8601, UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteDatabase:
    """Async SQLite database holding the chat schema.

    Attributes:
        path: Filesystem path of the database (":memory:" also works).
    """

    def __init__(self, db_path: str):
        self.path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the SQLite connection and create the schema."""
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.path, timeout=30.0)
        self._conn.row_factory = aiosqlite.Row
        # WAL lets readers proceed while a turn is writing
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.execute("PRAGMA busy_timeout=5000")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.info(f"SQLite database connected: {self.path}")

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("SQLite database closed")

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def _get_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a group of writes atomically.

        Commits when the block exits normally, rolls back if it raises.
        """
        conn = self._get_conn()
        async with self._write_lock:
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict]:
        """Run a query and return the first row as a dict (or None)."""
        async with self._get_conn().execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list:
        """Run a query and return every row as a dict."""
        async with self._get_conn().execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def command(self, cmd: str) -> Dict:
        """Admin commands used by health checks ("ping")."""
        if cmd == "ping":
            await self.fetch_one("SELECT 1")
            return {"ok": 1}
        raise ValueError(f"Unknown command: {cmd}")
