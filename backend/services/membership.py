"""Explicit chat membership management for project spaces."""
from __future__ import annotations

import logging

from backend.errors import ConflictError, ForbiddenError, NotFoundError
from backend.services.adoption import double_check_insert_adopt
from backend.services.conversation_resolver import ConversationResolver

logger = logging.getLogger("luna.membership")

INVITE_ORIGIN = "invite"


class MembershipService:
    def __init__(self, users, spaces, chats, guard, resolver: ConversationResolver):
        self.users = users
        self.spaces = spaces
        self.chats = chats
        self.guard = guard
        self.resolver = resolver

    async def _owned_project_space(self, space_id: str, user_id: str) -> dict:
        space = await self.spaces.get_by_id(space_id)
        if not space:
            raise NotFoundError(f"Space {space_id} not found")
        if space["user_id"] != user_id:
            raise ForbiddenError("Only the space owner can manage members")
        if space["category"] == "user":
            raise ForbiddenError("Direct conversations cannot have additional members")
        return space

    async def list_members(self, space_id: str, user_id: str) -> list[dict]:
        """Owner first, then participants in join order. Does not create a chat."""
        space = await self.spaces.get_by_id(space_id)
        if not space:
            raise NotFoundError(f"Space {space_id} not found")
        if not await self.guard.may_view(user_id, space_id):
            raise ForbiddenError("You do not have access to this space")

        member_ids = [space["user_id"]]
        chat_id = await self.guard.chat_id_for(space_id)
        if chat_id is not None:
            for participant in await self.chats.list_participants(chat_id):
                if participant["user_id"] not in member_ids:
                    member_ids.append(participant["user_id"])
        users = {u["id"]: u for u in await self.users.get_many(member_ids)}
        return [users[uid] for uid in member_ids if uid in users]

    async def add_members(self, space_id: str, user_id: str, member_ids: list[str]) -> list[str]:
        """Invite users to the space's chat. Returns the ids that were newly added."""
        await self._owned_project_space(space_id, user_id)
        chat_id = await self.resolver.resolve(space_id, user_id)

        added: list[str] = []
        known = {u["id"] for u in await self.users.get_many([m for m in member_ids if m != user_id])}
        for member_id in dict.fromkeys(member_ids):
            if member_id == user_id:
                continue
            if member_id not in known:
                logger.warning("Skipping unknown user %s for space %s", member_id, space_id)
                continue
            existing = await self.chats.get_participant(chat_id, member_id)
            if existing:
                if existing.get("origin") != INVITE_ORIGIN:
                    await self.chats.set_participant_origin(chat_id, member_id, INVITE_ORIGIN)
                continue
            try:
                adopted = await double_check_insert_adopt(
                    read_existing=lambda: self.chats.get_participant(chat_id, member_id),
                    insert=lambda: self.chats.insert_participant(chat_id, member_id, INVITE_ORIGIN),
                )
            except ConflictError:
                logger.warning("Membership of %s in chat %s changed concurrently", member_id, chat_id)
                continue
            if adopted.created:
                added.append(member_id)
        if added:
            logger.info("Added %d member(s) to chat %s (space %s)", len(added), chat_id, space_id)
        return added

    async def remove_members(self, space_id: str, user_id: str, member_ids: list[str]) -> int:
        await self._owned_project_space(space_id, user_id)
        chat_id = await self.guard.chat_id_for(space_id)
        if chat_id is None:
            raise NotFoundError("Chat not found for this space")
        targets = [m for m in dict.fromkeys(member_ids) if m != user_id]
        removed = await self.chats.delete_participants(chat_id, targets)
        logger.info("Removed %d member(s) from chat %s (space %s)", removed, chat_id, space_id)
        return removed
