"""Reading and posting chat messages."""
from __future__ import annotations

import logging

from backend import config
from backend.date_utils import normalize_timestamp
from backend.errors import ForbiddenError, NotFoundError
from backend.services.conversation_resolver import display_name
from backend.services.notifications import NotificationSink, notify_safely

logger = logging.getLogger("luna.messages")


class MessageService:
    def __init__(self, users, chats, messages, notifier: NotificationSink):
        self.users = users
        self.chats = chats
        self.messages = messages
        self.notifier = notifier

    async def _require_participant(self, chat_id: int, user_id: str) -> None:
        if not await self.chats.get_chat(chat_id):
            raise NotFoundError(f"Chat {chat_id} not found")
        if not await self.chats.get_participant(chat_id, user_id):
            raise ForbiddenError("You are not a participant of this chat")

    async def list_messages(
        self,
        chat_id: int,
        user_id: str,
        limit: int | None = None,
        before: str | None = None,
        before_id: int | None = None,
    ) -> list[dict]:
        """A page of messages in ascending (created_at, id) order, with author users attached.

        ``before`` alone pages by timestamp. Passing the oldest message's id as
        ``before_id`` as well pages past messages that share its timestamp.
        """
        await self._require_participant(chat_id, user_id)
        limit = max(1, min(limit or config.MESSAGES_DEFAULT_LIMIT, config.MESSAGES_MAX_LIMIT))
        cursor = normalize_timestamp(before) if before else None
        if before and not cursor:
            raise ValueError(f"Invalid 'before' timestamp: {before}")
        if before_id is not None and not cursor:
            raise ValueError("'beforeId' requires a 'before' timestamp")

        page = list(reversed(await self.messages.list_page(chat_id, limit, cursor, before_id)))
        authors = {
            u["id"]: u
            for u in await self.users.get_many(sorted({m["user_id"] for m in page if m.get("user_id")}))
        }
        for message in page:
            message["user"] = authors.get(message.get("user_id"))
        return page

    async def post_message(self, chat_id: int, user_id: str, text: str) -> dict:
        body = (text or "").strip()
        if not body:
            raise ValueError("Message cannot be empty")
        await self._require_participant(chat_id, user_id)

        message = await self.messages.insert(chat_id, user_id, body)
        author = await self.users.get_by_id(user_id)
        message["user"] = author

        recipients = [p["user_id"] for p in await self.chats.list_participants(chat_id) if p["user_id"] != user_id]
        await notify_safely(
            self.notifier,
            recipients,
            display_name(author),
            body[:140],
            {"type": "chat_message", "chatId": chat_id, "messageId": message["id"]},
        )
        return message
