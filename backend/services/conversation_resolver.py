"""Conversation Resolver: map a space to its single canonical chat.

``resolve(space_id, user_id)`` returns the chat bound to a space, creating or
reusing one on first contact. It is idempotent and safe under concurrent
calls for the same space: link and membership writes follow the
double-check-insert-adopt protocol, so concurrent callers converge on one
chat and speculative chats of losing callers are deleted.

Reuse rules for an unbound space:
- project spaces sharing an ``external_ref`` reuse the sibling's chat;
- a user (DM) space reuses an existing chat whose participants are exactly
  the owner and the counterpart.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from backend import config
from backend.errors import ForbiddenError, IntegrityViolation, NotFoundError
from backend.observability import record_resolution, start_span
from backend.services.access_guard import AccessGuard
from backend.services.adoption import double_check_insert_adopt
from backend.services.integrity import DM_PARTICIPANT_OVERFLOW, DUPLICATE_SPACE_LINK, IntegrityReporter

logger = logging.getLogger("luna.resolver")

DM_MAX_PARTICIPANTS = 2


@dataclass
class Resolution:
    chat_id: int
    space: dict
    # existing | created | reused | adopted
    outcome: str
    counterpart: dict | None = None


def _dm_party_ids(space: dict, counterpart: dict | None) -> set[str]:
    parties = {space["user_id"]}
    if counterpart:
        parties.add(counterpart["id"])
    return parties


def display_name(user: dict | None) -> str:
    if not user:
        return "Someone"
    return user.get("name") or user.get("email") or "Someone"


class ConversationResolver:
    def __init__(
        self,
        users,
        spaces,
        chats,
        messages,
        guard: AccessGuard,
        reporter: IntegrityReporter,
        self_heal_ghosts: bool | None = None,
    ):
        self.users = users
        self.spaces = spaces
        self.chats = chats
        self.messages = messages
        self.guard = guard
        self.reporter = reporter
        self.self_heal_ghosts = (
            config.LUNA_SELF_HEAL_GHOSTS_ON_RESOLVE if self_heal_ghosts is None else self_heal_ghosts
        )

    async def resolve(self, space_id: str, user_id: str) -> int:
        return (await self.resolve_detailed(space_id, user_id)).chat_id

    async def resolve_detailed(self, space_id: str, user_id: str) -> Resolution:
        started = time.perf_counter()
        with start_span("chat.resolve", {"luna.space_id": space_id, "luna.user_id": user_id}):
            space = await self.spaces.get_by_id(space_id)
            if not space:
                raise NotFoundError(f"Space {space_id} not found")
            counterpart = await self.guard.counterpart_for(space)

            link = await self._canonical_link(space_id)
            if link is not None:
                chat_id, outcome = int(link["chat_id"]), "existing"
                if self.self_heal_ghosts and space["user_id"] != user_id:
                    await self.guard.heal_ghost_membership(user_id, space_id)
            else:
                chat_id, outcome = await self._bind_chat(space, user_id, counterpart)

            await self._ensure_participants(chat_id, space, user_id, counterpart)

        duration_ms = (time.perf_counter() - started) * 1000
        record_resolution(space["category"], outcome, duration_ms)
        logger.debug("Resolved space %s -> chat %s (%s) in %.1fms", space_id, chat_id, outcome, duration_ms)
        return Resolution(chat_id=chat_id, space=space, outcome=outcome, counterpart=counterpart)

    async def conversation(self, space_id: str, user_id: str) -> dict[str, Any]:
        """Resolve for a viewer and return the chat id with its participant users."""
        if not await self.guard.may_view(user_id, space_id):
            if not await self.spaces.get_by_id(space_id):
                raise NotFoundError(f"Space {space_id} not found")
            raise ForbiddenError("You do not have access to this space")
        resolution = await self.resolve_detailed(space_id, user_id)
        participants = await self.chats.list_participants(resolution.chat_id)
        users = await self.users.get_many([p["user_id"] for p in participants])
        return {
            "chat_id": resolution.chat_id,
            "space": resolution.space,
            "participants": users,
        }

    async def open_direct(self, owner_id: str, counterpart_id: str) -> Resolution:
        """Find or create the owner's user space addressed to ``counterpart_id`` and resolve it."""
        if owner_id == counterpart_id:
            raise ValueError("Cannot open a direct conversation with yourself")
        owner = await self.users.get_by_id(owner_id)
        if not owner:
            raise NotFoundError(f"User {owner_id} not found")
        other = await self.users.get_by_id(counterpart_id)
        if not other:
            raise NotFoundError(f"User {counterpart_id} not found")

        names = [value for value in (other.get("email"), other.get("name")) if value]
        space = await self.spaces.find_direct_space(owner_id, names)
        if not space:
            space = await self.spaces.create({
                "user_id": owner_id,
                "name": other.get("email") or other.get("name"),
                "category": "user",
            })
            logger.info("Created direct space %s for %s -> %s", space["id"], owner_id, counterpart_id)
        return await self.resolve_detailed(space["id"], owner_id)

    # ── Binding ────────────────────────────────────────────────────

    async def _first_link(self, space_id: str) -> dict | None:
        links = await self.chats.list_links_for_space(space_id)
        return links[0] if links else None

    async def _canonical_link(self, space_id: str) -> dict | None:
        """The space's link; extra links (from a store without the unique index) are dropped and reported."""
        links = await self.chats.list_links_for_space(space_id)
        if not links:
            return None
        keeper, extras = links[0], links[1:]
        if extras:
            await self.chats.delete_links([link["id"] for link in extras])
            await self.reporter.report(IntegrityViolation(
                DUPLICATE_SPACE_LINK,
                space_id,
                {"kept_chat_id": keeper["chat_id"], "dropped_chat_ids": [link["chat_id"] for link in extras]},
            ))
        return keeper

    async def _find_reusable_chat(self, space: dict, counterpart: dict | None) -> int | None:
        if space["category"] == "project" and space.get("external_ref"):
            siblings = [
                s["id"] for s in await self.spaces.list_by_external_ref(space["external_ref"])
                if s["id"] != space["id"]
            ]
            links = await self.chats.list_links_for_spaces(siblings)
            if links:
                return int(links[0]["chat_id"])
        elif space["category"] == "user" and counterpart:
            candidates = await self.chats.find_dm_chats(space["user_id"], counterpart["id"])
            if candidates:
                return int(candidates[0]["id"])
        return None

    async def _bind_chat(self, space: dict, user_id: str, counterpart: dict | None) -> tuple[int, str]:
        space_id = space["id"]
        reusable = await self._find_reusable_chat(space, counterpart)
        if reusable is not None:
            adopted = await double_check_insert_adopt(
                read_existing=lambda: self._first_link(space_id),
                insert=lambda: self.chats.insert_link(space_id, reusable),
            )
            return int(adopted.row["chat_id"]), "reused" if adopted.created else "adopted"

        chat = await self.chats.create_chat()
        chat_id = int(chat["id"])
        adopted = await double_check_insert_adopt(
            read_existing=lambda: self._first_link(space_id),
            insert=lambda: self.chats.insert_link(space_id, chat_id),
            discard=lambda: self.chats.delete_chat(chat_id),
        )
        if not adopted.created:
            logger.info("Space %s was bound concurrently; discarded chat %s", space_id, chat_id)
            return int(adopted.row["chat_id"]), "adopted"

        await self._announce(chat_id, space, user_id, counterpart)
        logger.info("Created chat %s for %s space %s", chat_id, space["category"], space_id)
        return chat_id, "created"

    async def _announce(self, chat_id: int, space: dict, user_id: str, counterpart: dict | None) -> None:
        if space["category"] == "project":
            owner = await self.users.get_by_id(space["user_id"])
            text = f"{display_name(owner)} created project {space['name']}"
        else:
            # Only one of the two parties can start a DM.
            if user_id not in _dm_party_ids(space, counterpart):
                user_id = space["user_id"]
            user = await self.users.get_by_id(user_id)
            text = f"{display_name(user)} started a conversation"
        await self.messages.insert(chat_id, None, text)

    # ── Membership ─────────────────────────────────────────────────

    async def _ensure_participants(
        self, chat_id: int, space: dict, user_id: str, counterpart: dict | None,
    ) -> None:
        # Owner and counterpart go first so they always hold the DM slots.
        wanted: dict[str, str] = {space["user_id"]: "owner"}
        if counterpart:
            wanted.setdefault(counterpart["id"], "counterpart")

        if space["category"] != "user":
            wanted.setdefault(user_id, "resolve")
        else:
            if user_id not in wanted:
                logger.info("User %s is not a party to DM space %s; not adding", user_id, space["id"])
            participants = await self.chats.list_participants(chat_id)
            if len(participants) > DM_MAX_PARTICIPANTS:
                await self.reporter.report(IntegrityViolation(
                    DM_PARTICIPANT_OVERFLOW,
                    str(chat_id),
                    {"space_id": space["id"], "participants": [p["user_id"] for p in participants]},
                ))
                return

        for member_id, origin in wanted.items():
            await self._ensure_participant(chat_id, space, member_id, origin)

    async def _ensure_participant(self, chat_id: int, space: dict, user_id: str, origin: str) -> bool:
        if not await self.guard.may_join(user_id, space["id"]):
            return False
        if space["category"] == "user":
            participants = await self.chats.list_participants(chat_id)
            member_ids = {p["user_id"] for p in participants}
            if user_id in member_ids:
                return True
            if len(member_ids) >= DM_MAX_PARTICIPANTS:
                logger.warning("DM chat %s already has two participants; not adding %s", chat_id, user_id)
                return False
        await double_check_insert_adopt(
            read_existing=lambda: self.chats.get_participant(chat_id, user_id),
            insert=lambda: self.chats.insert_participant(chat_id, user_id, origin),
        )
        return True
