"""
Create a user account from the command line.

    python backend/create_user.py alice
    python backend/create_user.py alice --db ./data/chat.db

The password is prompted for twice unless --password is given. Uses the
same username/password rules as the register endpoint.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import List, Optional

from config import get_settings
from conversation_store import ConversationStore
from models.user import User
from routers.auth import register_user
from sqlite_db import SQLiteDatabase
from utils.errors import AppError

logger = logging.getLogger(__name__)


async def create_user(db_path: str, username: str, password: str) -> User:
    """Open the database at db_path, create the account, close again.

    Raises:
        ValidationFailed: Username or password breaks the rules.
        ConflictError: Username already taken.
    """
    db = SQLiteDatabase(db_path)
    await db.connect()
    try:
        store = ConversationStore(db, default_title=get_settings().default_session_title)
        return await register_user(store, username, password)
    finally:
        await db.close()


def _prompt_password() -> Optional[str]:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        return None
    return password


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Create a chat relay user account.")
    ap.add_argument("username")
    ap.add_argument("--password", help="Skip the interactive prompt (visible in shell history).")
    ap.add_argument("--db", default=None, help="SQLite file (default: SQLITE_DB_PATH from settings).")
    args = ap.parse_args(argv)

    password = args.password
    if password is None:
        password = _prompt_password()
        if password is None:
            print("Error: passwords do not match", file=sys.stderr)
            return 1

    db_path = args.db or get_settings().sqlite_db_path
    try:
        user = asyncio.run(create_user(db_path, args.username, password))
    except AppError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        for detail in e.details or []:
            print(f"  - {detail['field']}: {detail['message']}", file=sys.stderr)
        return 1

    print("User created")
    print(f"  ID:       {user.id}")
    print(f"  Username: {user.username}")
    print(f"  Created:  {user.created_at.isoformat()}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    sys.exit(main())
