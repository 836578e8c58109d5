import unittest

from models.message import Role, TokenUsage
from relay_fakes import TempStore
from utils.errors import ConflictError, ForbiddenError, NotFoundError


class ConversationStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = TempStore()
        self.store = await self.tmp.open()
        self.alice = await self.store.create_user("alice", "hash-a")
        self.bob = await self.store.create_user("bob", "hash-b")

    async def asyncTearDown(self) -> None:
        await self.tmp.close()

    async def test_duplicate_username_is_a_conflict(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            await self.store.create_user("alice", "other")
        self.assertEqual("USERNAME_TAKEN", ctx.exception.code)

    async def test_user_lookup_by_name_and_id(self) -> None:
        by_name = await self.store.get_user_by_username("alice")
        by_id = await self.store.get_user(self.alice.id)
        self.assertEqual(self.alice.id, by_name.id)
        self.assertEqual("hash-a", by_id.password_hash)
        self.assertIsNone(await self.store.get_user_by_username("carol"))

    async def test_new_session_has_default_title_and_no_messages(self) -> None:
        session = await self.store.create_session(self.alice.id)
        fetched = await self.store.get_session(session.id, self.alice.id)
        self.assertEqual("New Chat", fetched.title)
        self.assertEqual(0, fetched.message_count)

    async def test_get_session_enforces_ownership(self) -> None:
        session = await self.store.create_session(self.alice.id)
        with self.assertRaises(ForbiddenError) as ctx:
            await self.store.get_session(session.id, self.bob.id)
        self.assertEqual("ACCESS_DENIED", ctx.exception.code)
        with self.assertRaises(NotFoundError) as ctx:
            await self.store.get_session("00000000-0000-4000-8000-000000000000", self.alice.id)
        self.assertEqual("SESSION_NOT_FOUND", ctx.exception.code)

    async def test_only_assistant_messages_carry_usage(self) -> None:
        session = await self.store.create_session(self.alice.id)
        usage = TokenUsage(prompt_tokens=5, completion_tokens=3)
        user = await self.store.append_message(session.id, Role.USER, "Hello", model="x", usage=usage)
        reply = await self.store.append_message(
            session.id, Role.ASSISTANT, "Hi there!", model="gpt-4o-mini", usage=usage
        )

        self.assertIsNone(user.prompt_tokens)
        self.assertIsNone(user.model)
        stored = await self.store.list_recent_messages(session.id, 10)
        self.assertEqual([user.id, reply.id], [m.id for m in stored])
        self.assertEqual((5, 3, 8), (stored[1].prompt_tokens, stored[1].completion_tokens, stored[1].total_tokens))
        self.assertEqual("gpt-4o-mini", stored[1].model)

    async def test_user_message_bumps_session_activity(self) -> None:
        older = await self.store.create_session(self.alice.id, "older")
        newer = await self.store.create_session(self.alice.id, "newer")
        await self.store.append_message(older.id, Role.USER, "ping")

        sessions, total = await self.store.list_sessions(self.alice.id, page=1, limit=10)
        self.assertEqual(2, total)
        self.assertEqual([older.id, newer.id], [s.id for s in sessions])
        self.assertEqual(1, sessions[0].message_count)

    async def test_list_sessions_pages_and_scopes_to_owner(self) -> None:
        for i in range(3):
            await self.store.create_session(self.alice.id, f"s{i}")
        await self.store.create_session(self.bob.id)

        page, total = await self.store.list_sessions(self.alice.id, page=2, limit=2)
        self.assertEqual(3, total)
        self.assertEqual(1, len(page))

    async def test_recent_messages_are_the_tail_in_order(self) -> None:
        session = await self.store.create_session(self.alice.id)
        for i in range(6):
            await self.store.append_message(session.id, Role.USER, f"m{i}")

        recent = await self.store.list_recent_messages(session.id, 4)
        self.assertEqual(["m2", "m3", "m4", "m5"], [m.content for m in recent])

    async def test_get_messages_pages_backwards_from_newest(self) -> None:
        session = await self.store.create_session(self.alice.id)
        ids = []
        for i in range(5):
            message = await self.store.append_message(session.id, Role.USER, f"m{i}")
            ids.append(message.id)

        page, has_more = await self.store.get_messages(session.id, self.alice.id, limit=2)
        self.assertEqual(["m3", "m4"], [m.content for m in page])
        self.assertTrue(has_more)

        page, has_more = await self.store.get_messages(session.id, self.alice.id, limit=2, before=ids[3])
        self.assertEqual(["m1", "m2"], [m.content for m in page])
        self.assertTrue(has_more)

        page, has_more = await self.store.get_messages(session.id, self.alice.id, limit=2, before=ids[1])
        self.assertEqual(["m0"], [m.content for m in page])
        self.assertFalse(has_more)

    async def test_get_messages_checks_ownership(self) -> None:
        session = await self.store.create_session(self.alice.id)
        with self.assertRaises(ForbiddenError):
            await self.store.get_messages(session.id, self.bob.id, limit=10)

    async def test_rename_if_default_loses_to_user_rename(self) -> None:
        first = await self.store.create_session(self.alice.id)
        self.assertTrue(await self.store.rename_session_if_default(first.id, "Derived"))
        self.assertEqual("Derived", (await self.store.get_session(first.id, self.alice.id)).title)

        second = await self.store.create_session(self.alice.id)
        await self.store.update_session_title(second.id, self.alice.id, "Mine")
        self.assertFalse(await self.store.rename_session_if_default(second.id, "Derived"))
        self.assertEqual("Mine", (await self.store.get_session(second.id, self.alice.id)).title)

    async def test_delete_session_removes_its_messages(self) -> None:
        session = await self.store.create_session(self.alice.id)
        await self.store.append_message(session.id, Role.USER, "bye")

        with self.assertRaises(ForbiddenError):
            await self.store.delete_session(session.id, self.bob.id)
        await self.store.delete_session(session.id, self.alice.id)

        with self.assertRaises(NotFoundError):
            await self.store.get_session(session.id, self.alice.id)
        self.assertEqual(0, await self.store.count_messages(session.id))


if __name__ == "__main__":
    unittest.main()
