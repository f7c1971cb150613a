"""Access Guard: who may join (or must leave) a space's chat.

Spaces form a multi-parent hierarchy (project → area → client). A member of a
leaf's chat can *see* every ancestor of that leaf so breadcrumbs render, but
seeing an ancestor is not a grant. An ancestor reached only that way is a
"ghost parent" for the user, and the user is never added to its chat as a
side effect of visiting the leaf.

Every participant mutation in the resolver goes through ``may_join``.
"""
from __future__ import annotations

import logging
from typing import Iterable

from backend import config

logger = logging.getLogger("luna.access")

# Membership origins that count as an explicit grant independent of the hierarchy.
_GRANT_ORIGINS = {"invite"}


class AccessGuard:
    def __init__(self, users, spaces, chats, max_depth: int | None = None):
        self.users = users
        self.spaces = spaces
        self.chats = chats
        self.max_depth = max_depth if max_depth is not None else config.MAX_ANCESTOR_DEPTH

    # ── Lookups ────────────────────────────────────────────────────

    async def counterpart_for(self, space: dict) -> dict | None:
        """The other party of a user space: a non-owner whose email or name equals the space name."""
        if space.get("category") != "user":
            return None
        return await self.users.find_by_name_or_email(space.get("name") or "", exclude_user_id=space["user_id"])

    async def chat_id_for(self, space_id: str) -> int | None:
        links = await self.chats.list_links_for_space(space_id)
        return links[0]["chat_id"] if links else None

    async def ancestors_of(self, space_ids: Iterable[str]) -> set[str]:
        """Transitive parents of ``space_ids``, one query per hierarchy level."""
        seen: set[str] = set()
        frontier = set(space_ids)
        depth = 0
        while frontier and depth < self.max_depth:
            parent_map = await self.spaces.get_parent_map(sorted(frontier))
            next_frontier: set[str] = set()
            for parent_ids in parent_map.values():
                for parent_id in parent_ids:
                    if parent_id not in seen:
                        seen.add(parent_id)
                        next_frontier.add(parent_id)
            frontier = next_frontier
            depth += 1
        return seen

    async def _reachable_ancestors(self, user_id: str, exclude_chat_id: int | None = None) -> set[str]:
        links = await self.chats.list_user_chat_links(user_id)
        direct = {link["space_id"] for link in links if link["chat_id"] != exclude_chat_id}
        return await self.ancestors_of(direct)

    async def _is_counterpart(self, user_id: str, space: dict) -> bool:
        counterpart = await self.counterpart_for(space)
        return bool(counterpart and counterpart["id"] == user_id)

    # ── Predicates ─────────────────────────────────────────────────

    async def is_ghost_parent(self, user_id: str, space_id: str) -> bool:
        space = await self.spaces.get_by_id(space_id)
        if not space or space["user_id"] == user_id:
            return False
        chat_id = await self.chat_id_for(space_id)
        if chat_id is not None and await self.chats.get_participant(chat_id, user_id):
            return False
        return space_id in await self._reachable_ancestors(user_id)

    async def may_join(self, user_id: str, space_id: str) -> bool:
        """False exactly when ``space_id`` is a ghost parent for ``user_id``."""
        space = await self.spaces.get_by_id(space_id)
        if not space:
            return False
        if space["user_id"] == user_id or await self._is_counterpart(user_id, space):
            return True
        if await self.is_ghost_parent(user_id, space_id):
            logger.info("Ghost parent: user %s may not join chat of space %s", user_id, space_id)
            return False
        return True

    async def may_view(self, user_id: str, space_id: str) -> bool:
        space = await self.spaces.get_by_id(space_id)
        if not space:
            return False
        if space["user_id"] == user_id or await self._is_counterpart(user_id, space):
            return True
        chat_id = await self.chat_id_for(space_id)
        if chat_id is not None and await self.chats.get_participant(chat_id, user_id):
            return True
        return space_id in await self._reachable_ancestors(user_id)

    async def ghost_parents_for(self, user_id: str) -> set[str]:
        """Every space the user sees only as an ancestor of a space they can access."""
        links = await self.chats.list_user_chat_links(user_id)
        direct = {link["space_id"] for link in links}
        candidates = await self.ancestors_of(direct) - direct
        if not candidates:
            return set()
        owned = {s["id"] for s in await self.spaces.get_many(sorted(candidates)) if s["user_id"] == user_id}
        return candidates - owned

    # ── Healing ────────────────────────────────────────────────────

    async def heal_ghost_membership(self, user_id: str, space_id: str) -> bool:
        """Remove ``user_id`` from the space's chat if the membership only exists through the hierarchy.

        Returns True when a participant row was removed.
        """
        space = await self.spaces.get_by_id(space_id)
        if not space:
            return False
        chat_id = await self.chat_id_for(space_id)
        if chat_id is None:
            return False
        participant = await self.chats.get_participant(chat_id, user_id)
        if not participant or participant.get("origin") in _GRANT_ORIGINS:
            return False

        # Siblings sharing the chat count as the same grant.
        linked_ids = [link["space_id"] for link in await self.chats.list_links_for_chats([chat_id])]
        for linked in await self.spaces.get_many(linked_ids):
            if linked["user_id"] == user_id or await self._is_counterpart(user_id, linked):
                return False

        if space_id not in await self._reachable_ancestors(user_id, exclude_chat_id=chat_id):
            return False

        removed = await self.chats.delete_participants(chat_id, [user_id])
        if removed:
            logger.info("Removed ghost-parent membership: user %s from chat %s (space %s)", user_id, chat_id, space_id)
        return removed > 0
