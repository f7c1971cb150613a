import unittest

from backend.errors import ForbiddenError, NotFoundError
from backend.services.messages import MessageService
from backend.tests.chat_fixtures import ChatStoreTestCase, FailingSink


class MembershipServiceTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")
        self.carol = await self.make_user("Carol")
        self.project = await self.make_space(self.alice, "Garden")

    async def test_owner_adds_members_as_invites(self) -> None:
        added = await self.services.membership.add_members(
            self.project["id"], self.alice["id"], [self.bob["id"], self.bob["id"], self.alice["id"], "ghost-user"],
        )

        self.assertEqual(added, [self.bob["id"]])
        chat_id = await self.services.guard.chat_id_for(self.project["id"])
        participant = await self.services.chats.get_participant(chat_id, self.bob["id"])
        self.assertEqual(participant["origin"], "invite")

    async def test_adding_existing_member_is_not_reported_again(self) -> None:
        await self.services.membership.add_members(self.project["id"], self.alice["id"], [self.bob["id"]])

        added = await self.services.membership.add_members(self.project["id"], self.alice["id"], [self.bob["id"]])

        self.assertEqual(added, [])

    async def test_only_owner_manages_members(self) -> None:
        with self.assertRaises(ForbiddenError):
            await self.services.membership.add_members(self.project["id"], self.bob["id"], [self.carol["id"]])
        with self.assertRaises(ForbiddenError):
            await self.services.membership.remove_members(self.project["id"], self.bob["id"], [self.alice["id"]])

    async def test_user_spaces_refuse_extra_members(self) -> None:
        dm = await self.make_space(self.alice, self.bob["email"], category="user")

        with self.assertRaises(ForbiddenError):
            await self.services.membership.add_members(dm["id"], self.alice["id"], [self.carol["id"]])

    async def test_remove_members_never_removes_owner(self) -> None:
        await self.services.membership.add_members(self.project["id"], self.alice["id"], [self.bob["id"]])

        removed = await self.services.membership.remove_members(
            self.project["id"], self.alice["id"], [self.bob["id"], self.alice["id"]],
        )

        self.assertEqual(removed, 1)
        members = await self.services.membership.list_members(self.project["id"], self.alice["id"])
        self.assertEqual([m["id"] for m in members], [self.alice["id"]])

    async def test_remove_members_without_chat_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.services.membership.remove_members(self.project["id"], self.alice["id"], [self.bob["id"]])

    async def test_list_members_puts_owner_first_without_creating_chat(self) -> None:
        members = await self.services.membership.list_members(self.project["id"], self.alice["id"])

        self.assertEqual([m["id"] for m in members], [self.alice["id"]])
        self.assertEqual(await self.count("chats"), 0)


class MessageServiceTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")
        self.carol = await self.make_user("Carol")
        space = await self.make_space(self.alice, self.bob["email"], category="user")
        self.chat_id = await self.services.resolver.resolve(space["id"], self.alice["id"])

    async def test_post_message_notifies_other_participants(self) -> None:
        message = await self.services.message_service.post_message(self.chat_id, self.alice["id"], "  hello  ")

        self.assertEqual(message["message"], "hello")
        self.assertEqual(message["user"]["id"], self.alice["id"])
        self.assertEqual(len(self.sink.calls), 1)
        self.assertEqual(self.sink.calls[0]["user_ids"], [self.bob["id"]])
        self.assertEqual(self.sink.calls[0]["title"], "Alice")
        self.assertEqual(self.sink.calls[0]["data"]["chatId"], self.chat_id)

    async def test_failed_notification_does_not_fail_the_write(self) -> None:
        service = MessageService(self.services.users, self.services.chats, self.services.messages, FailingSink())

        message = await service.post_message(self.chat_id, self.bob["id"], "still delivered")

        stored = await self.services.messages.get_latest(self.chat_id)
        self.assertEqual(stored["id"], message["id"])

    async def test_empty_message_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.services.message_service.post_message(self.chat_id, self.alice["id"], "   ")

    async def test_non_participant_cannot_read_or_post(self) -> None:
        with self.assertRaises(ForbiddenError):
            await self.services.message_service.list_messages(self.chat_id, self.carol["id"])
        with self.assertRaises(ForbiddenError):
            await self.services.message_service.post_message(self.chat_id, self.carol["id"], "hi")

    async def test_unknown_chat_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            await self.services.message_service.list_messages(999, self.alice["id"])

    async def test_list_messages_ascending_with_before_cursor(self) -> None:
        first = await self.services.messages.insert(self.chat_id, self.alice["id"], "one")
        second = await self.services.messages.insert(self.chat_id, self.bob["id"], "two")
        await self.set_created_at("chat_messages", first["id"], "2024-01-01T10:00:00.000000+00:00")
        await self.set_created_at("chat_messages", second["id"], "2024-01-01T11:00:00.000000+00:00")

        page = await self.services.message_service.list_messages(self.chat_id, self.alice["id"], limit=2)
        older = await self.services.message_service.list_messages(
            self.chat_id, self.alice["id"], before="2024-01-01T11:00:00Z",
        )

        self.assertEqual([m["message"] for m in page][-1], "Alice started a conversation")
        self.assertEqual([m["message"] for m in older], ["one"])
        self.assertEqual(older[0]["user"]["id"], self.alice["id"])

    async def test_before_id_pages_past_messages_sharing_a_timestamp(self) -> None:
        stamp = "2024-01-01T10:00:00.000000+00:00"
        system = (await self.services.messages.list_page(self.chat_id, 1))[0]
        await self.set_created_at("chat_messages", system["id"], "2024-01-01T09:00:00.000000+00:00")
        rows = [await self.services.messages.insert(self.chat_id, self.alice["id"], text) for text in ("a", "b", "c")]
        for row in rows:
            await self.set_created_at("chat_messages", row["id"], stamp)

        newest = await self.services.message_service.list_messages(self.chat_id, self.alice["id"], limit=2)
        older = await self.services.message_service.list_messages(
            self.chat_id, self.alice["id"], limit=2, before=newest[0]["created_at"], before_id=newest[0]["id"],
        )

        self.assertEqual([m["message"] for m in newest], ["b", "c"])
        self.assertEqual([m["message"] for m in older], ["Alice started a conversation", "a"])

    async def test_before_id_without_timestamp_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.services.message_service.list_messages(self.chat_id, self.alice["id"], before_id=3)

    async def test_invalid_before_cursor_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.services.message_service.list_messages(self.chat_id, self.alice["id"], before="yesterday")


if __name__ == "__main__":
    unittest.main()
