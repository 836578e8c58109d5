"""
Database connection module (SQLite backend).

Provides connect/disconnect lifecycle plus get_database() / get_store()
accessors. Routers depend on get_store() to reach sessions and messages.

Typical usage:
    from database import get_store
    store = get_store()
    session = await store.get_session(session_id, user_id)
"""

import logging
from typing import Optional

from config import get_settings
from conversation_store import ConversationStore
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)

# ============================================================
# Global database instance
# ============================================================
_database: Optional[SQLiteDatabase] = None
_store: Optional[ConversationStore] = None


async def connect_db(db_path: Optional[str] = None) -> None:
    """Initialize the SQLite database connection.

    Called once during application startup (main.py lifespan).
    Creates the database file if it doesn't exist.
    """
    global _database, _store

    settings = get_settings()
    db_path = db_path or settings.sqlite_db_path
    logger.info(f"Connecting to SQLite database: {db_path}")

    _database = SQLiteDatabase(db_path)
    await _database.connect()
    _store = ConversationStore(_database, default_title=settings.default_session_title)

    logger.info("SQLite database connected successfully")


async def close_db() -> None:
    """Close the database connection gracefully.

    Called during application shutdown.
    """
    global _database, _store
    if _database:
        await _database.close()
        logger.info("Database connection closed")
    _database = None
    _store = None


def get_database() -> SQLiteDatabase:
    """Get the database instance.

    Raises:
        RuntimeError: If connect_db() hasn't been called yet.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Call connect_db() first.")
    return _database


def get_store() -> ConversationStore:
    """Get the conversation store (FastAPI dependency).

    Raises:
        RuntimeError: If connect_db() hasn't been called yet.
    """
    if _store is None:
        raise RuntimeError("Database not initialized. Call connect_db() first.")
    return _store
