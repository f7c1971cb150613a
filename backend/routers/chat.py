"""Chat API router.

The caller is identified by the ``X-User-Id`` header set by the auth proxy.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Header, Query, Request

from backend.errors import ForbiddenError
from backend.models import (
    AddMembersResponse,
    ConversationResponse,
    DirectConversationResponse,
    MarkReadResponse,
    MembersRequest,
    MembersResponse,
    MessagesResponse,
    RemoveMembersResponse,
    SendMessageRequest,
    UnreadCountsResponse,
    ChatMessage,
    message_model,
    user_summary,
)
from backend.routers.common import domain_errors, get_services

chat_router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger("luna.chat")


@chat_router.get("/space/{space_id}", response_model=ConversationResponse)
async def get_space_conversation(
    space_id: str,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Resolve the space's chat for the caller and return it with participants."""
    services = get_services(request)
    with domain_errors():
        conversation = await services.resolver.conversation(space_id, user_id)
    return ConversationResponse(
        chatId=conversation["chat_id"],
        spaceId=space_id,
        participants=[user_summary(u) for u in conversation["participants"]],
    )


@chat_router.get("/space/{space_id}/members", response_model=MembersResponse)
async def list_space_members(
    space_id: str,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        members = await services.membership.list_members(space_id, user_id)
    return MembersResponse(members=[user_summary(m) for m in members])


@chat_router.post("/space/{space_id}/members", response_model=AddMembersResponse)
async def add_space_members(
    space_id: str,
    req: MembersRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        added = await services.membership.add_members(space_id, user_id, req.userIds)
    return AddMembersResponse(success=True, added=added)


@chat_router.delete("/space/{space_id}/members", response_model=RemoveMembersResponse)
async def remove_space_members(
    space_id: str,
    req: MembersRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        removed = await services.membership.remove_members(space_id, user_id, req.userIds)
    return RemoveMembersResponse(success=True, removed=removed)


@chat_router.post("/space/{space_id}/read", response_model=MarkReadResponse)
async def mark_space_read(
    space_id: str,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    """Mark the space's chat read up to its latest message."""
    services = get_services(request)
    with domain_errors():
        conversation = await services.resolver.conversation(space_id, user_id)
        chat_id = conversation["chat_id"]
        # Ghost-parent viewers can see the space but hold no watermark in its chat.
        if not await services.chats.get_participant(chat_id, user_id):
            raise ForbiddenError("You are not a participant of this chat")
        watermark = await services.unread.mark_read(chat_id, user_id)
    return MarkReadResponse(
        chatId=chat_id,
        lastReadMessageId=watermark["last_read_message_id"],
        lastReadAt=watermark["last_read_at"],
    )


@chat_router.post("/direct/{counterpart_id}", response_model=DirectConversationResponse)
async def open_direct_conversation(
    counterpart_id: str,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        resolution = await services.resolver.open_direct(user_id, counterpart_id)
    return DirectConversationResponse(
        chatId=resolution.chat_id,
        spaceId=resolution.space["id"],
        created=resolution.outcome == "created",
    )


@chat_router.get("/unread", response_model=UnreadCountsResponse)
async def get_unread_counts(
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    by_chat = await services.unread.unread_counts(user_id)
    by_space = await services.unread.unread_counts_by_space(user_id)
    return UnreadCountsResponse(
        chats={str(chat_id): count for chat_id, count in by_chat.items()},
        spaces=by_space,
        total=sum(by_chat.values()),
    )


@chat_router.get("/{chat_id}/messages", response_model=MessagesResponse)
async def list_chat_messages(
    chat_id: int,
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1),
    before: Optional[str] = Query(default=None),
    before_id: Optional[int] = Query(default=None, alias="beforeId"),
    user_id: str = Header(..., alias="X-User-Id"),
):
    """A page of messages in chronological order; ``before`` (plus ``beforeId``) pages backwards."""
    services = get_services(request)
    with domain_errors():
        rows = await services.message_service.list_messages(
            chat_id, user_id, limit=limit, before=before, before_id=before_id,
        )
    return MessagesResponse(messages=[message_model(r) for r in rows])


@chat_router.post("/{chat_id}/messages", response_model=ChatMessage)
async def post_chat_message(
    chat_id: int,
    req: SendMessageRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
):
    services = get_services(request)
    with domain_errors():
        row = await services.message_service.post_message(chat_id, user_id, req.message)
    return message_model(row)
