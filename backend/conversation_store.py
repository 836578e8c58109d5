"""
Conversation store: ownership-checked CRUD for sessions and messages.

Every read or mutation of a session goes through ``get_session`` first,
which raises NotFoundError / ForbiddenError before anything is touched.
Messages are always returned in replay order (oldest first).
"""

import logging
from typing import List, Optional, Tuple

from models.message import Message, Role, TokenUsage
from models.session import Session
from models.user import User
from sqlite_db import SQLiteDatabase, from_db_time, new_id, to_db_time, utcnow
from utils.errors import ConflictError, ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "New Chat"

_SESSION_COLUMNS = """
    s.id, s.user_id, s.title, s.created_at, s.updated_at,
    (SELECT COUNT(*) FROM messages m WHERE m.session_id = s.id) AS message_count
"""


def _row_to_session(row: dict) -> Session:
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        message_count=row.get("message_count") or 0,
    )


def _row_to_message(row: dict) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        role=Role(row["role"]),
        content=row["content"],
        created_at=from_db_time(row["created_at"]),
        model=row["model"],
        prompt_tokens=row["prompt_tokens"],
        completion_tokens=row["completion_tokens"],
        total_tokens=row["total_tokens"],
    )


class ConversationStore:
    """Sessions, messages and users on top of SQLiteDatabase."""

    def __init__(self, db: SQLiteDatabase, default_title: str = DEFAULT_SESSION_TITLE):
        self.db = db
        self.default_title = default_title

    # ============================================================
    # Users
    # ============================================================

    async def create_user(self, username: str, password_hash: str) -> User:
        existing = await self.db.fetch_one(
            "SELECT id FROM users WHERE username = ?", (username,)
        )
        if existing:
            raise ConflictError("Username already taken", code="USERNAME_TAKEN")

        user = User(
            id=new_id(),
            username=username,
            password_hash=password_hash,
            created_at=utcnow(),
        )
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO users (id, username, password_hash, created_at) VALUES (?, ?, ?, ?)",
                (user.id, user.username, user.password_hash, to_db_time(user.created_at)),
            )
        logger.info(f"Created user {user.username} ({user.id})")
        return user

    async def get_user_by_username(self, username: str) -> Optional[User]:
        row = await self.db.fetch_one("SELECT * FROM users WHERE username = ?", (username,))
        return self._row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_user(row) if row else None

    @staticmethod
    def _row_to_user(row: dict) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            created_at=from_db_time(row["created_at"]),
        )

    # ============================================================
    # Sessions
    # ============================================================

    async def create_session(self, user_id: str, title: Optional[str] = None) -> Session:
        """Create an empty session owned by user_id."""
        now = utcnow()
        session = Session(
            id=new_id(),
            user_id=user_id,
            title=title or self.default_title,
            created_at=now,
            updated_at=now,
            message_count=0,
        )
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO sessions (id, user_id, title, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (session.id, user_id, session.title, to_db_time(now), to_db_time(now)),
            )
        return session

    async def get_session(self, session_id: str, owner_id: str) -> Session:
        """Fetch a session, enforcing ownership.

        Raises:
            NotFoundError: No session with that id.
            ForbiddenError: The session belongs to someone else.
        """
        row = await self.db.fetch_one(
            f"SELECT {_SESSION_COLUMNS} FROM sessions s WHERE s.id = ?", (session_id,)
        )
        if row is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")
        if row["user_id"] != owner_id:
            raise ForbiddenError("Access denied", code="ACCESS_DENIED")
        return _row_to_session(row)

    async def list_sessions(self, user_id: str, page: int, limit: int) -> Tuple[List[Session], int]:
        """One page of the user's sessions, most recently updated first."""
        rows = await self.db.fetch_all(
            f"SELECT {_SESSION_COLUMNS} FROM sessions s WHERE s.user_id = ? "
            "ORDER BY s.updated_at DESC LIMIT ? OFFSET ?",
            (user_id, limit, (page - 1) * limit),
        )
        total_row = await self.db.fetch_one(
            "SELECT COUNT(*) AS total FROM sessions WHERE user_id = ?", (user_id,)
        )
        return [_row_to_session(r) for r in rows], total_row["total"] if total_row else 0

    async def update_session_title(self, session_id: str, owner_id: str, title: str) -> Session:
        await self.get_session(session_id, owner_id)
        async with self.db.transaction() as conn:
            await conn.execute(
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, to_db_time(utcnow()), session_id),
            )
        return await self.get_session(session_id, owner_id)

    async def delete_session(self, session_id: str, owner_id: str) -> None:
        """Delete a session; its messages go with it (ON DELETE CASCADE)."""
        await self.get_session(session_id, owner_id)
        async with self.db.transaction() as conn:
            await conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        logger.info(f"Deleted session {session_id}")

    async def rename_session_if_default(self, session_id: str, new_title: str) -> bool:
        """Set the title only if it is still the default placeholder.

        A user rename that lands first wins. Returns True if the title changed.
        """
        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE sessions SET title = ? WHERE id = ? AND title = ?",
                (new_title, session_id, self.default_title),
            )
            changed = cursor.rowcount > 0
        return changed

    # ============================================================
    # Messages
    # ============================================================

    async def append_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        model: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
    ) -> Message:
        """Append a message to a session.

        User messages also bump the session's updated_at in the same
        transaction. Token accounting is only stored for assistant messages.
        """
        role = Role(role)
        now = utcnow()
        is_assistant = role == Role.ASSISTANT
        message = Message(
            id=new_id(),
            session_id=session_id,
            role=role,
            content=content,
            created_at=now,
            model=model if is_assistant else None,
            prompt_tokens=usage.prompt_tokens if is_assistant and usage else None,
            completion_tokens=usage.completion_tokens if is_assistant and usage else None,
            total_tokens=usage.total_tokens if is_assistant and usage else None,
        )
        async with self.db.transaction() as conn:
            await conn.execute(
                "INSERT INTO messages (id, session_id, role, content, created_at, model, "
                "prompt_tokens, completion_tokens, total_tokens) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id, session_id, role.value, content, to_db_time(now),
                    message.model, message.prompt_tokens, message.completion_tokens,
                    message.total_tokens,
                ),
            )
            if role == Role.USER:
                await conn.execute(
                    "UPDATE sessions SET updated_at = ? WHERE id = ?",
                    (to_db_time(now), session_id),
                )
        return message

    async def list_recent_messages(self, session_id: str, limit: int) -> List[Message]:
        """The most recent ``limit`` messages, returned oldest first."""
        rows = await self.db.fetch_all(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT ?",
            (session_id, limit),
        )
        return [_row_to_message(r) for r in reversed(rows)]

    async def get_messages(
        self,
        session_id: str,
        owner_id: str,
        limit: int,
        before: Optional[str] = None,
    ) -> Tuple[List[Message], bool]:
        """The newest page of history (optionally older than ``before``), oldest first.

        Args:
            before: Only return messages older than this message id. An
                unknown id is ignored and the newest page is returned.

        Returns:
            (messages, has_more) where has_more means older messages exist.
        """
        await self.get_session(session_id, owner_id)

        params: list = [session_id]
        where = "session_id = ?"
        if before:
            anchor = await self.db.fetch_one(
                "SELECT seq FROM messages WHERE id = ? AND session_id = ?",
                (before, session_id),
            )
            if anchor:
                where += " AND seq < ?"
                params.append(anchor["seq"])

        # One extra row tells us whether an older page exists
        rows = await self.db.fetch_all(
            f"SELECT * FROM messages WHERE {where} ORDER BY seq DESC LIMIT ?",
            tuple(params) + (limit + 1,),
        )
        has_more = len(rows) > limit
        page = list(reversed(rows[:limit]))
        return [_row_to_message(r) for r in page], has_more

    async def count_messages(self, session_id: str) -> int:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS total FROM messages WHERE session_id = ?", (session_id,)
        )
        return row["total"] if row else 0
