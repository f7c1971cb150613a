"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

# ── Users & spaces ──────────────────────────────────────────────────

class UserSummary(BaseModel):
    id: str
    name: str = ""
    email: str = ""


class Space(BaseModel):
    id: str
    ownerId: str
    name: str
    category: str  # "project" | "user"
    archived: bool = False
    parentIds: list[str] = Field(default_factory=list)
    externalRef: Optional[str] = None
    createdAt: str = ""
    isGhost: bool = False
    unreadCount: int = 0


class SpaceCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    category: Literal["project", "user"] = "project"
    parentIds: list[str] = Field(default_factory=list)
    externalRef: Optional[str] = None


class SpaceListResponse(BaseModel):
    owned: list[Space] = Field(default_factory=list)
    shared: list[Space] = Field(default_factory=list)
    ghostParents: list[Space] = Field(default_factory=list)


# ── Chat ────────────────────────────────────────────────────────────

class ConversationResponse(BaseModel):
    chatId: int
    spaceId: str
    participants: list[UserSummary] = Field(default_factory=list)


class DirectConversationResponse(BaseModel):
    chatId: int
    spaceId: str
    created: bool = False


class ChatMessage(BaseModel):
    id: int
    chatId: int
    userId: Optional[str] = None  # None for system messages
    message: str
    createdAt: str
    user: Optional[UserSummary] = None


class MessagesResponse(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    message: str


class MembersRequest(BaseModel):
    userIds: list[str] = Field(default_factory=list)


class MembersResponse(BaseModel):
    members: list[UserSummary] = Field(default_factory=list)


class AddMembersResponse(BaseModel):
    success: bool = True
    added: list[str] = Field(default_factory=list)


class RemoveMembersResponse(BaseModel):
    success: bool = True
    removed: int = 0


class MarkReadResponse(BaseModel):
    chatId: int
    lastReadMessageId: Optional[int] = None
    lastReadAt: Optional[str] = None


class UnreadCountsResponse(BaseModel):
    chats: dict[str, int] = Field(default_factory=dict)
    spaces: dict[str, int] = Field(default_factory=dict)
    total: int = 0


# ── Converters ──────────────────────────────────────────────────────

def user_summary(row: dict | None) -> Optional[UserSummary]:
    if not row:
        return None
    return UserSummary(id=row["id"], name=row.get("name") or "", email=row.get("email") or "")


def space_model(row: dict, is_ghost: bool = False, unread: int = 0) -> Space:
    return Space(
        id=row["id"],
        ownerId=row["user_id"],
        name=row["name"],
        category=row["category"],
        archived=bool(row.get("archived")),
        parentIds=list(row.get("parent_ids") or []),
        externalRef=row.get("external_ref"),
        createdAt=row.get("created_at") or "",
        isGhost=is_ghost,
        unreadCount=unread,
    )


def message_model(row: dict) -> ChatMessage:
    return ChatMessage(
        id=int(row["id"]),
        chatId=int(row["chat_id"]),
        userId=row.get("user_id"),
        message=row["message"],
        createdAt=row["created_at"],
        user=user_summary(row.get("user")),
    )
