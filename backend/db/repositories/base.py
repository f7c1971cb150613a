"""Repository contracts shared by the SQLite and Postgres implementations.

Rows travel as plain dicts. Chat and message ids are integers assigned by the
store; user and space ids are opaque strings. Inserts that hit a uniqueness
constraint raise ``backend.errors.ConflictError`` on every backend.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class UserRepository(Protocol):
    async def create(self, user_data: dict) -> dict: ...
    async def get_by_id(self, user_id: str) -> dict | None: ...
    async def get_many(self, user_ids: list[str]) -> list[dict]: ...
    async def find_by_name_or_email(self, value: str, exclude_user_id: str | None = None) -> dict | None: ...


@runtime_checkable
class SpaceRepository(Protocol):
    async def create(self, space_data: dict) -> dict: ...
    async def get_by_id(self, space_id: str) -> dict | None: ...
    async def get_many(self, space_ids: list[str]) -> list[dict]: ...
    async def list_owned(self, user_id: str, category: str | None = None, include_archived: bool = False) -> list[dict]: ...
    async def list_addressed_to(self, names: list[str], exclude_owner_id: str) -> list[dict]: ...
    async def list_by_external_ref(self, external_ref: str, category: str = "project") -> list[dict]: ...
    async def find_direct_space(self, owner_id: str, names: list[str]) -> dict | None: ...
    async def set_parents(self, space_id: str, parent_ids: list[str]) -> None: ...
    async def get_parent_map(self, space_ids: list[str]) -> dict[str, list[str]]: ...


@runtime_checkable
class ChatRepository(Protocol):
    async def create_chat(self) -> dict: ...
    async def get_chat(self, chat_id: int) -> dict | None: ...
    async def delete_chat(self, chat_id: int) -> None: ...
    async def list_links_for_space(self, space_id: str) -> list[dict]: ...
    async def list_links_for_spaces(self, space_ids: list[str]) -> list[dict]: ...
    async def list_links_for_chats(self, chat_ids: list[int]) -> list[dict]: ...
    async def insert_link(self, space_id: str, chat_id: int) -> dict: ...
    async def delete_links(self, link_ids: list[int]) -> int: ...
    async def repoint_links(self, from_chat_id: int, to_chat_id: int) -> int: ...
    async def list_participants(self, chat_id: int) -> list[dict]: ...
    async def get_participant(self, chat_id: int, user_id: str) -> dict | None: ...
    async def insert_participant(self, chat_id: int, user_id: str, origin: str = "resolve") -> dict: ...
    async def set_participant_origin(self, chat_id: int, user_id: str, origin: str) -> None: ...
    async def delete_participants(self, chat_id: int, user_ids: list[str]) -> int: ...
    async def list_user_chat_links(self, user_id: str) -> list[dict]: ...
    async def find_dm_chats(self, user_a: str, user_b: str) -> list[dict]: ...
    async def list_dm_chats(self) -> list[dict]: ...
    async def list_spaces_with_duplicate_links(self) -> list[str]: ...
    async def list_orphan_chats(self, created_before: str) -> list[dict]: ...
    async def list_parent_memberships(self) -> list[dict]: ...


@runtime_checkable
class MessageRepository(Protocol):
    async def insert(self, chat_id: int, user_id: str | None, message: str) -> dict: ...
    async def get_latest(self, chat_id: int) -> dict | None: ...
    async def list_page(
        self, chat_id: int, limit: int, before: str | None = None, before_id: int | None = None,
    ) -> list[dict]: ...
    async def move_messages(self, from_chat_id: int, to_chat_id: int) -> int: ...
    async def count_unread(self, chat_id: int, user_id: str) -> int: ...
    async def count_unread_for_user(self, user_id: str) -> dict[int, int]: ...
    async def get_read(self, chat_id: int, user_id: str) -> dict | None: ...
    async def list_reads(self, chat_id: int) -> list[dict]: ...
    async def upsert_read(self, chat_id: int, user_id: str, message_id: int | None, message_at: str | None) -> None: ...
    async def delete_read(self, chat_id: int, user_id: str) -> None: ...


@runtime_checkable
class IntegrityReportRepository(Protocol):
    async def record(self, kind: str, subject_id: str, detail: dict) -> int: ...
    async def list_open(self, kind: str | None = None) -> list[dict]: ...
    async def resolve_open(self, kind: str | None = None) -> int: ...
