import types
import unittest

from fastapi import HTTPException

from backend.models import MembersRequest, SendMessageRequest, SpaceCreateRequest
from backend.routers import chat as chat_router
from backend.routers import spaces as spaces_router
from backend.tests.chat_fixtures import ChatStoreTestCase


class ChatRouterTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(services=self.services)))
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")
        self.carol = await self.make_user("Carol")

    async def test_missing_services_is_503(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))

        with self.assertRaises(HTTPException) as ctx:
            await chat_router.get_unread_counts(request, user_id=self.alice["id"])
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_get_space_conversation_and_post_message(self) -> None:
        space = await self.make_space(self.alice, self.bob["email"], category="user")

        conversation = await chat_router.get_space_conversation(space["id"], self.request, user_id=self.alice["id"])
        message = await chat_router.post_chat_message(
            conversation.chatId, SendMessageRequest(message="hi"), self.request, user_id=self.alice["id"],
        )
        page = await chat_router.list_chat_messages(
            conversation.chatId, self.request, limit=None, before=None, before_id=None, user_id=self.bob["id"],
        )

        self.assertEqual({p.id for p in conversation.participants}, {self.alice["id"], self.bob["id"]})
        self.assertEqual(message.userId, self.alice["id"])
        self.assertEqual([m.message for m in page.messages], ["Alice started a conversation", "hi"])
        self.assertIsNone(page.messages[0].userId)

    async def test_unknown_space_is_404_and_stranger_is_403(self) -> None:
        space = await self.make_space(self.alice, "Garden")

        with self.assertRaises(HTTPException) as missing:
            await chat_router.get_space_conversation("missing", self.request, user_id=self.alice["id"])
        with self.assertRaises(HTTPException) as stranger:
            await chat_router.get_space_conversation(space["id"], self.request, user_id=self.carol["id"])

        self.assertEqual(missing.exception.status_code, 404)
        self.assertEqual(stranger.exception.status_code, 403)

    async def test_members_endpoints(self) -> None:
        space = await self.make_space(self.alice, "Garden")

        added = await chat_router.add_space_members(
            space["id"], MembersRequest(userIds=[self.bob["id"]]), self.request, user_id=self.alice["id"],
        )
        members = await chat_router.list_space_members(space["id"], self.request, user_id=self.bob["id"])
        with self.assertRaises(HTTPException) as forbidden:
            await chat_router.remove_space_members(
                space["id"], MembersRequest(userIds=[self.alice["id"]]), self.request, user_id=self.bob["id"],
            )
        removed = await chat_router.remove_space_members(
            space["id"], MembersRequest(userIds=[self.bob["id"]]), self.request, user_id=self.alice["id"],
        )

        self.assertEqual(added.added, [self.bob["id"]])
        self.assertEqual([m.id for m in members.members], [self.alice["id"], self.bob["id"]])
        self.assertEqual(forbidden.exception.status_code, 403)
        self.assertEqual(removed.removed, 1)

    async def test_mark_read_and_unread_counts(self) -> None:
        space = await self.make_space(self.alice, self.bob["email"], category="user")
        await chat_router.get_space_conversation(space["id"], self.request, user_id=self.alice["id"])

        before = await chat_router.get_unread_counts(self.request, user_id=self.bob["id"])
        marked = await chat_router.mark_space_read(space["id"], self.request, user_id=self.bob["id"])
        after = await chat_router.get_unread_counts(self.request, user_id=self.bob["id"])

        self.assertEqual(before.total, 1)
        self.assertEqual(before.spaces, {space["id"]: 1})
        self.assertIsNotNone(marked.lastReadMessageId)
        self.assertEqual(after.total, 0)

    async def test_ghost_parent_viewer_cannot_mark_read(self) -> None:
        client = await self.make_space(self.alice, "Acme")
        project = await self.make_space(self.alice, "Website", parents=[client])
        await self.services.membership.add_members(project["id"], self.alice["id"], [self.bob["id"]])

        with self.assertRaises(HTTPException) as ctx:
            await chat_router.mark_space_read(client["id"], self.request, user_id=self.bob["id"])
        self.assertEqual(ctx.exception.status_code, 403)

    async def test_open_direct_conversation(self) -> None:
        first = await chat_router.open_direct_conversation(self.bob["id"], self.request, user_id=self.alice["id"])
        again = await chat_router.open_direct_conversation(self.bob["id"], self.request, user_id=self.alice["id"])

        self.assertTrue(first.created)
        self.assertFalse(again.created)
        self.assertEqual(first.chatId, again.chatId)

        with self.assertRaises(HTTPException) as ctx:
            await chat_router.open_direct_conversation("nobody", self.request, user_id=self.alice["id"])
        self.assertEqual(ctx.exception.status_code, 404)


class SpacesRouterTests(ChatStoreTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(services=self.services)))
        self.alice = await self.make_user("Alice")
        self.bob = await self.make_user("Bob")

    async def test_create_space_with_parent(self) -> None:
        client = await spaces_router.create_space(
            SpaceCreateRequest(name="Acme"), self.request, user_id=self.alice["id"],
        )
        project = await spaces_router.create_space(
            SpaceCreateRequest(name="Website", parentIds=[client.id], externalRef="notion-1"),
            self.request,
            user_id=self.alice["id"],
        )

        self.assertEqual(project.parentIds, [client.id])
        self.assertEqual(project.externalRef, "notion-1")

    async def test_create_space_rejects_unknown_or_foreign_parent(self) -> None:
        foreign = await self.make_space(self.bob, "Private")

        with self.assertRaises(HTTPException) as unknown:
            await spaces_router.create_space(
                SpaceCreateRequest(name="Child", parentIds=["missing"]), self.request, user_id=self.alice["id"],
            )
        with self.assertRaises(HTTPException) as forbidden:
            await spaces_router.create_space(
                SpaceCreateRequest(name="Child", parentIds=[foreign["id"]]), self.request, user_id=self.alice["id"],
            )

        self.assertEqual(unknown.exception.status_code, 400)
        self.assertEqual(forbidden.exception.status_code, 403)

    async def test_listing_flags_ghost_parents(self) -> None:
        client = await self.make_space(self.alice, "Acme")
        project = await self.make_space(self.alice, "Website", parents=[client])
        await self.services.membership.add_members(project["id"], self.alice["id"], [self.bob["id"]])
        dm = await self.make_space(self.alice, self.bob["email"], category="user")

        listing = await spaces_router.list_spaces(self.request, include_archived=False, user_id=self.bob["id"])

        self.assertEqual(listing.owned, [])
        self.assertEqual({s.id for s in listing.shared}, {project["id"], dm["id"]})
        self.assertEqual([s.id for s in listing.ghostParents], [client["id"]])
        self.assertTrue(listing.ghostParents[0].isGhost)

        ghost = await spaces_router.get_space(client["id"], self.request, user_id=self.bob["id"])
        self.assertTrue(ghost.isGhost)


if __name__ == "__main__":
    unittest.main()
