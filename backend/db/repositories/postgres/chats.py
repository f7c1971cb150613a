"""PostgreSQL implementation of ChatRepository."""
from __future__ import annotations

import asyncpg

from backend.date_utils import utc_now_iso
from backend.errors import ConflictError

_DM_LINK_FILTER = """
    EXISTS (SELECT 1 FROM space_chat_links l WHERE l.chat_id = c.id)
    AND NOT EXISTS (
        SELECT 1 FROM space_chat_links l
        JOIN spaces s ON s.id = l.space_id
        WHERE l.chat_id = c.id AND s.category != 'user'
    )
"""


def _rowcount(status: str) -> int:
    # asyncpg returns command tags such as "DELETE 3" / "UPDATE 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresChatRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def create_chat(self) -> dict:
        now = utc_now_iso()
        chat_id = await self.db.fetchval("INSERT INTO chats (created_at) VALUES ($1) RETURNING id", now)
        return {"id": chat_id, "created_at": now}

    async def get_chat(self, chat_id: int) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM chats WHERE id = $1", chat_id)
        return dict(row) if row else None

    async def delete_chat(self, chat_id: int) -> None:
        await self.db.execute("DELETE FROM chats WHERE id = $1", chat_id)

    async def list_links_for_space(self, space_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM space_chat_links WHERE space_id = $1 ORDER BY id", space_id,
        )
        return [dict(r) for r in rows]

    async def list_links_for_spaces(self, space_ids: list[str]) -> list[dict]:
        if not space_ids:
            return []
        rows = await self.db.fetch(
            """SELECT l.*, c.created_at AS chat_created_at
               FROM space_chat_links l JOIN chats c ON c.id = l.chat_id
               WHERE l.space_id = ANY($1::text[])
               ORDER BY c.created_at, c.id, l.id""",
            list(space_ids),
        )
        return [dict(r) for r in rows]

    async def list_links_for_chats(self, chat_ids: list[int]) -> list[dict]:
        if not chat_ids:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM space_chat_links WHERE chat_id = ANY($1::bigint[]) ORDER BY id",
            list(chat_ids),
        )
        return [dict(r) for r in rows]

    async def insert_link(self, space_id: str, chat_id: int) -> dict:
        now = utc_now_iso()
        try:
            link_id = await self.db.fetchval(
                """INSERT INTO space_chat_links (space_id, chat_id, created_at)
                   VALUES ($1, $2, $3) RETURNING id""",
                space_id, chat_id, now,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("space_chat_links", f"space_id={space_id}") from exc
        return {"id": link_id, "space_id": space_id, "chat_id": chat_id, "created_at": now}

    async def delete_links(self, link_ids: list[int]) -> int:
        if not link_ids:
            return 0
        status = await self.db.execute(
            "DELETE FROM space_chat_links WHERE id = ANY($1::bigint[])", list(link_ids),
        )
        return _rowcount(status)

    async def repoint_links(self, from_chat_id: int, to_chat_id: int) -> int:
        status = await self.db.execute(
            "UPDATE space_chat_links SET chat_id = $1 WHERE chat_id = $2", to_chat_id, from_chat_id,
        )
        return _rowcount(status)

    async def list_participants(self, chat_id: int) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM chat_participants WHERE chat_id = $1 ORDER BY id", chat_id,
        )
        return [dict(r) for r in rows]

    async def get_participant(self, chat_id: int, user_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM chat_participants WHERE chat_id = $1 AND user_id = $2", chat_id, user_id,
        )
        return dict(row) if row else None

    async def insert_participant(self, chat_id: int, user_id: str, origin: str = "resolve") -> dict:
        now = utc_now_iso()
        try:
            row_id = await self.db.fetchval(
                """INSERT INTO chat_participants (chat_id, user_id, origin, created_at)
                   VALUES ($1, $2, $3, $4) RETURNING id""",
                chat_id, user_id, origin, now,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("chat_participants", f"chat_id={chat_id} user_id={user_id}") from exc
        return {"id": row_id, "chat_id": chat_id, "user_id": user_id, "origin": origin, "created_at": now}

    async def set_participant_origin(self, chat_id: int, user_id: str, origin: str) -> None:
        await self.db.execute(
            "UPDATE chat_participants SET origin = $1 WHERE chat_id = $2 AND user_id = $3",
            origin, chat_id, user_id,
        )

    async def delete_participants(self, chat_id: int, user_ids: list[str]) -> int:
        if not user_ids:
            return 0
        status = await self.db.execute(
            "DELETE FROM chat_participants WHERE chat_id = $1 AND user_id = ANY($2::text[])",
            chat_id, list(user_ids),
        )
        return _rowcount(status)

    async def list_user_chat_links(self, user_id: str) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT l.space_id, l.chat_id FROM chat_participants p
               JOIN space_chat_links l ON l.chat_id = p.chat_id
               WHERE p.user_id = $1
               ORDER BY l.id""",
            user_id,
        )
        return [dict(r) for r in rows]

    async def find_dm_chats(self, user_a: str, user_b: str) -> list[dict]:
        rows = await self.db.fetch(
            f"""SELECT c.* FROM chats c
                WHERE EXISTS (SELECT 1 FROM chat_participants p WHERE p.chat_id = c.id AND p.user_id = $1)
                  AND EXISTS (SELECT 1 FROM chat_participants p WHERE p.chat_id = c.id AND p.user_id = $2)
                  AND (SELECT COUNT(*) FROM chat_participants p WHERE p.chat_id = c.id) = 2
                  AND {_DM_LINK_FILTER}
                ORDER BY c.created_at, c.id""",
            user_a, user_b,
        )
        return [dict(r) for r in rows]

    async def list_dm_chats(self) -> list[dict]:
        rows = await self.db.fetch(
            f"""SELECT c.id, c.created_at, MIN(p.user_id) AS user_a, MAX(p.user_id) AS user_b
                FROM chats c JOIN chat_participants p ON p.chat_id = c.id
                WHERE {_DM_LINK_FILTER}
                GROUP BY c.id, c.created_at
                HAVING COUNT(*) = 2
                ORDER BY c.created_at, c.id"""
        )
        return [dict(r) for r in rows]

    async def list_spaces_with_duplicate_links(self) -> list[str]:
        rows = await self.db.fetch(
            """SELECT space_id FROM space_chat_links
               GROUP BY space_id HAVING COUNT(*) > 1
               ORDER BY space_id"""
        )
        return [r["space_id"] for r in rows]

    async def list_orphan_chats(self, created_before: str) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT c.* FROM chats c
               WHERE c.created_at < $1
                 AND NOT EXISTS (SELECT 1 FROM space_chat_links l WHERE l.chat_id = c.id)
                 AND NOT EXISTS (SELECT 1 FROM chat_messages m WHERE m.chat_id = c.id)
               ORDER BY c.created_at, c.id""",
            created_before,
        )
        return [dict(r) for r in rows]

    async def list_parent_memberships(self) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT DISTINCT p.user_id, l.space_id
               FROM chat_participants p
               JOIN space_chat_links l ON l.chat_id = p.chat_id
               WHERE EXISTS (SELECT 1 FROM space_parents sp WHERE sp.parent_id = l.space_id)
               ORDER BY l.space_id, p.user_id"""
        )
        return [dict(r) for r in rows]
