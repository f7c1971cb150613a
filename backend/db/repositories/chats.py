"""SQLite implementation of ChatRepository (chats, space links, participants)."""
from __future__ import annotations

import aiosqlite

from backend.date_utils import utc_now_iso
from backend.errors import ConflictError

# A chat is a DM candidate only when it is linked and every linked space is a user space.
_DM_LINK_FILTER = """
    EXISTS (SELECT 1 FROM space_chat_links l WHERE l.chat_id = c.id)
    AND NOT EXISTS (
        SELECT 1 FROM space_chat_links l
        JOIN spaces s ON s.id = l.space_id
        WHERE l.chat_id = c.id AND s.category != 'user'
    )
"""


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def _is_unique_violation(exc: aiosqlite.IntegrityError) -> bool:
    return "UNIQUE" in str(exc).upper()


class SqliteChatRepository:
    """Chats, the space→chat link table and chat membership."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    # ── Chats ──────────────────────────────────────────────────────

    async def create_chat(self) -> dict:
        now = utc_now_iso()
        async with self.db.execute("INSERT INTO chats (created_at) VALUES (?)", (now,)) as cur:
            chat_id = cur.lastrowid
        await self.db.commit()
        return {"id": chat_id, "created_at": now}

    async def get_chat(self, chat_id: int) -> dict | None:
        async with self.db.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def delete_chat(self, chat_id: int) -> None:
        await self.db.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        await self.db.commit()

    # ── Space links ────────────────────────────────────────────────

    async def list_links_for_space(self, space_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM space_chat_links WHERE space_id = ? ORDER BY id",
            (space_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_links_for_spaces(self, space_ids: list[str]) -> list[dict]:
        if not space_ids:
            return []
        async with self.db.execute(
            f"""SELECT l.*, c.created_at AS chat_created_at
                FROM space_chat_links l JOIN chats c ON c.id = l.chat_id
                WHERE l.space_id IN ({_placeholders(len(space_ids))})
                ORDER BY c.created_at, c.id, l.id""",
            tuple(space_ids),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_links_for_chats(self, chat_ids: list[int]) -> list[dict]:
        if not chat_ids:
            return []
        async with self.db.execute(
            f"SELECT * FROM space_chat_links WHERE chat_id IN ({_placeholders(len(chat_ids))}) ORDER BY id",
            tuple(chat_ids),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def insert_link(self, space_id: str, chat_id: int) -> dict:
        now = utc_now_iso()
        try:
            async with self.db.execute(
                "INSERT INTO space_chat_links (space_id, chat_id, created_at) VALUES (?, ?, ?)",
                (space_id, chat_id, now),
            ) as cur:
                link_id = cur.lastrowid
        except aiosqlite.IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ConflictError("space_chat_links", f"space_id={space_id}") from exc
            raise
        await self.db.commit()
        return {"id": link_id, "space_id": space_id, "chat_id": chat_id, "created_at": now}

    async def delete_links(self, link_ids: list[int]) -> int:
        if not link_ids:
            return 0
        async with self.db.execute(
            f"DELETE FROM space_chat_links WHERE id IN ({_placeholders(len(link_ids))})",
            tuple(link_ids),
        ) as cur:
            deleted = cur.rowcount
        await self.db.commit()
        return deleted

    async def repoint_links(self, from_chat_id: int, to_chat_id: int) -> int:
        async with self.db.execute(
            "UPDATE space_chat_links SET chat_id = ? WHERE chat_id = ?",
            (to_chat_id, from_chat_id),
        ) as cur:
            updated = cur.rowcount
        await self.db.commit()
        return updated

    # ── Participants ───────────────────────────────────────────────

    async def list_participants(self, chat_id: int) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM chat_participants WHERE chat_id = ? ORDER BY id",
            (chat_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def get_participant(self, chat_id: int, user_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM chat_participants WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def insert_participant(self, chat_id: int, user_id: str, origin: str = "resolve") -> dict:
        now = utc_now_iso()
        try:
            async with self.db.execute(
                "INSERT INTO chat_participants (chat_id, user_id, origin, created_at) VALUES (?, ?, ?, ?)",
                (chat_id, user_id, origin, now),
            ) as cur:
                row_id = cur.lastrowid
        except aiosqlite.IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ConflictError("chat_participants", f"chat_id={chat_id} user_id={user_id}") from exc
            raise
        await self.db.commit()
        return {"id": row_id, "chat_id": chat_id, "user_id": user_id, "origin": origin, "created_at": now}

    async def set_participant_origin(self, chat_id: int, user_id: str, origin: str) -> None:
        await self.db.execute(
            "UPDATE chat_participants SET origin = ? WHERE chat_id = ? AND user_id = ?",
            (origin, chat_id, user_id),
        )
        await self.db.commit()

    async def delete_participants(self, chat_id: int, user_ids: list[str]) -> int:
        if not user_ids:
            return 0
        async with self.db.execute(
            f"DELETE FROM chat_participants WHERE chat_id = ? AND user_id IN ({_placeholders(len(user_ids))})",
            (chat_id, *user_ids),
        ) as cur:
            deleted = cur.rowcount
        await self.db.commit()
        return deleted

    async def list_user_chat_links(self, user_id: str) -> list[dict]:
        """Every (space_id, chat_id) link for chats the user participates in."""
        async with self.db.execute(
            """SELECT l.space_id, l.chat_id FROM chat_participants p
               JOIN space_chat_links l ON l.chat_id = p.chat_id
               WHERE p.user_id = ?
               ORDER BY l.id""",
            (user_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    # ── Canonical / consolidation queries ──────────────────────────

    async def find_dm_chats(self, user_a: str, user_b: str) -> list[dict]:
        """Chats whose participants are exactly {user_a, user_b}, oldest first."""
        async with self.db.execute(
            f"""SELECT c.* FROM chats c
                WHERE EXISTS (SELECT 1 FROM chat_participants p WHERE p.chat_id = c.id AND p.user_id = ?)
                  AND EXISTS (SELECT 1 FROM chat_participants p WHERE p.chat_id = c.id AND p.user_id = ?)
                  AND (SELECT COUNT(*) FROM chat_participants p WHERE p.chat_id = c.id) = 2
                  AND {_DM_LINK_FILTER}
                ORDER BY c.created_at, c.id""",
            (user_a, user_b),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_dm_chats(self) -> list[dict]:
        """All two-participant DM chats with their (sorted) participant pair, oldest first."""
        async with self.db.execute(
            f"""SELECT c.id, c.created_at, MIN(p.user_id) AS user_a, MAX(p.user_id) AS user_b
                FROM chats c JOIN chat_participants p ON p.chat_id = c.id
                WHERE {_DM_LINK_FILTER}
                GROUP BY c.id, c.created_at
                HAVING COUNT(*) = 2
                ORDER BY c.created_at, c.id"""
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_spaces_with_duplicate_links(self) -> list[str]:
        async with self.db.execute(
            """SELECT space_id FROM space_chat_links
               GROUP BY space_id HAVING COUNT(*) > 1
               ORDER BY space_id"""
        ) as cur:
            return [r["space_id"] for r in await cur.fetchall()]

    async def list_orphan_chats(self, created_before: str) -> list[dict]:
        async with self.db.execute(
            """SELECT c.* FROM chats c
               WHERE c.created_at < ?
                 AND NOT EXISTS (SELECT 1 FROM space_chat_links l WHERE l.chat_id = c.id)
                 AND NOT EXISTS (SELECT 1 FROM chat_messages m WHERE m.chat_id = c.id)
               ORDER BY c.created_at, c.id""",
            (created_before,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_parent_memberships(self) -> list[dict]:
        """(user_id, space_id) memberships of spaces that are some other space's parent."""
        async with self.db.execute(
            """SELECT DISTINCT p.user_id, l.space_id
               FROM chat_participants p
               JOIN space_chat_links l ON l.chat_id = p.chat_id
               WHERE EXISTS (SELECT 1 FROM space_parents sp WHERE sp.parent_id = l.space_id)
               ORDER BY l.space_id, p.user_id"""
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]
