import asyncio
import contextlib
import io
import tempfile
import unittest
from pathlib import Path

from conversation_store import ConversationStore
from create_user import main
from routers.auth import verify_password
from sqlite_db import SQLiteDatabase


async def lookup(db_path: str, username: str):
    db = SQLiteDatabase(db_path)
    await db.connect()
    try:
        return await ConversationStore(db).get_user_by_username(username)
    finally:
        await db.close()


class CreateUserCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self._tmp.name) / "users.db")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def run_main(self, *argv: str):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main([*argv, "--db", self.db_path])
        return code, out.getvalue(), err.getvalue()

    def test_creates_a_user_that_can_log_in(self) -> None:
        code, out, _ = self.run_main("alice", "--password", "secret123")

        self.assertEqual(0, code)
        self.assertIn("alice", out)
        user = asyncio.run(lookup(self.db_path, "alice"))
        self.assertIsNotNone(user)
        self.assertTrue(verify_password("secret123", user.password_hash))

    def test_duplicate_username_fails(self) -> None:
        self.run_main("bob", "--password", "secret123")
        code, _, err = self.run_main("bob", "--password", "secret456")

        self.assertEqual(1, code)
        self.assertIn("already taken", err)

    def test_weak_password_lists_the_problem(self) -> None:
        code, _, err = self.run_main("carol", "--password", "short")

        self.assertEqual(1, code)
        self.assertIn("password:", err)
        self.assertIsNone(asyncio.run(lookup(self.db_path, "carol")))


if __name__ == "__main__":
    unittest.main()
