import unittest

from backend.services.unread_tracker import UnreadTracker
from backend.tests.chat_fixtures import ChatStoreTestCase


class _FrozenLatest:
    """Message repository whose latest message is fixed, like a request that read before newer writes landed."""

    def __init__(self, inner, latest: dict) -> None:
        self.inner = inner
        self.latest = latest

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def get_latest(self, chat_id):
        return self.latest


class UnreadTrackerTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")
        self.space = await self.make_space(self.alice, self.bob["email"], category="user")
        self.chat_id = await self.services.resolver.resolve(self.space["id"], self.alice["id"])
        self.tracker = self.services.unread

    async def test_system_message_counts_as_unread_for_everyone(self) -> None:
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.alice["id"]), 1)
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 1)

    async def test_own_messages_are_never_unread(self) -> None:
        await self.tracker.mark_read(self.chat_id, self.alice["id"])
        await self.services.messages.insert(self.chat_id, self.alice["id"], "hello")

        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.alice["id"]), 0)
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 2)

    async def test_mark_read_moves_watermark_and_is_idempotent(self) -> None:
        await self.services.messages.insert(self.chat_id, self.alice["id"], "one")
        await self.services.messages.insert(self.chat_id, self.alice["id"], "two")

        first = await self.tracker.mark_read(self.chat_id, self.bob["id"])
        second = await self.tracker.mark_read(self.chat_id, self.bob["id"])

        self.assertEqual(first, second)
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 0)

        await self.services.messages.insert(self.chat_id, self.alice["id"], "three")
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 1)

    async def test_same_timestamp_messages_ordered_by_id(self) -> None:
        first = await self.services.messages.insert(self.chat_id, self.alice["id"], "one")
        second = await self.services.messages.insert(self.chat_id, self.alice["id"], "two")
        await self.set_created_at("chat_messages", second["id"], first["created_at"])

        await self.services.messages.upsert_read(self.chat_id, self.bob["id"], first["id"], first["created_at"])

        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 1)

    async def test_stale_mark_read_never_moves_watermark_backwards(self) -> None:
        first = await self.services.messages.insert(self.chat_id, self.alice["id"], "one")
        stale_tracker = UnreadTracker(self.services.chats, _FrozenLatest(self.services.messages, first))
        second = await self.services.messages.insert(self.chat_id, self.alice["id"], "two")

        await self.tracker.mark_read(self.chat_id, self.bob["id"])
        watermark = await stale_tracker.mark_read(self.chat_id, self.bob["id"])

        self.assertEqual(watermark["last_read_message_id"], second["id"])
        self.assertEqual(await self.tracker.unread_count(self.chat_id, self.bob["id"]), 0)

    async def test_empty_watermark_does_not_overwrite_a_real_one(self) -> None:
        first = await self.services.messages.insert(self.chat_id, self.alice["id"], "one")
        await self.services.messages.upsert_read(self.chat_id, self.bob["id"], first["id"], first["created_at"])

        await self.services.messages.upsert_read(self.chat_id, self.bob["id"], None, None)

        read = await self.services.messages.get_read(self.chat_id, self.bob["id"])
        self.assertEqual(read["last_read_message_id"], first["id"])

    async def test_mark_read_on_empty_chat(self) -> None:
        chat = await self.services.chats.create_chat()

        watermark = await self.tracker.mark_read(chat["id"], self.bob["id"])

        self.assertIsNone(watermark["last_read_message_id"])
        self.assertEqual(await self.tracker.unread_count(chat["id"], self.bob["id"]), 0)

    async def test_batch_counts_match_single_counts(self) -> None:
        project = await self.make_space(self.bob, "Garden")
        project_chat = await self.services.resolver.resolve(project["id"], self.bob["id"])
        await self.services.messages.insert(self.chat_id, self.alice["id"], "hi bob")

        counts = await self.tracker.unread_counts(self.bob["id"])

        self.assertEqual(set(counts), {self.chat_id, project_chat})
        for chat_id, count in counts.items():
            self.assertEqual(count, await self.tracker.unread_count(chat_id, self.bob["id"]))

    async def test_counts_by_space_cover_every_linked_space(self) -> None:
        bob_side = await self.make_space(self.bob, self.alice["email"], category="user")
        await self.services.resolver.resolve(bob_side["id"], self.bob["id"])

        by_space = await self.tracker.unread_counts_by_space(self.bob["id"])

        self.assertEqual(by_space, {self.space["id"]: 1, bob_side["id"]: 1})


if __name__ == "__main__":
    unittest.main()
