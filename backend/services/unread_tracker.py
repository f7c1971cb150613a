"""Unread Tracker: per-user read watermarks and unread counts.

A message is unread for a user when it comes after the user's watermark in
(created_at, id) order and was not written by that user. System messages
(no author) count as unread for everyone.
"""
from __future__ import annotations

import logging

logger = logging.getLogger("luna.unread")


class UnreadTracker:
    def __init__(self, chats, messages):
        self.chats = chats
        self.messages = messages

    async def unread_count(self, chat_id: int, user_id: str) -> int:
        return await self.messages.count_unread(chat_id, user_id)

    async def mark_read(self, chat_id: int, user_id: str) -> dict:
        """Move the user's watermark to the chat's latest message. Idempotent.

        The watermark never moves backwards: when a concurrent call already
        stored a newer one, that newer watermark is kept and returned.
        """
        latest = await self.messages.get_latest(chat_id)
        message_id = latest["id"] if latest else None
        message_at = latest["created_at"] if latest else None
        await self.messages.upsert_read(chat_id, user_id, message_id, message_at)
        stored = await self.messages.get_read(chat_id, user_id) or {}
        logger.debug(
            "Marked chat %s read for %s up to message %s", chat_id, user_id, stored.get("last_read_message_id"),
        )
        return {
            "chat_id": chat_id,
            "last_read_message_id": stored.get("last_read_message_id"),
            "last_read_at": stored.get("last_read_at"),
        }

    async def unread_counts(self, user_id: str) -> dict[int, int]:
        """Unread count for every chat the user participates in."""
        return await self.messages.count_unread_for_user(user_id)

    async def unread_counts_by_space(self, user_id: str) -> dict[str, int]:
        """Unread counts keyed by every space linked to one of the user's chats."""
        counts = await self.unread_counts(user_id)
        if not counts:
            return {}
        links = await self.chats.list_links_for_chats(sorted(counts))
        return {link["space_id"]: counts.get(int(link["chat_id"]), 0) for link in links}
