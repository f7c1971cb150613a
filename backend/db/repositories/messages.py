"""SQLite implementation of MessageRepository (messages + read watermarks)."""
from __future__ import annotations

import aiosqlite

from backend.date_utils import utc_now_iso

# Message ordering is (created_at, id); a watermark row stores both halves.
_AFTER_WATERMARK = """
    (r.last_read_message_id IS NULL
     OR m.created_at > r.last_read_at
     OR (m.created_at = r.last_read_at AND m.id > r.last_read_message_id))
"""

# Upserts only ever move a watermark forward; a stale writer loses to a newer one.
_WATERMARK_ADVANCES = """
    chat_message_reads.last_read_message_id IS NULL
    OR (excluded.last_read_message_id IS NOT NULL
        AND (excluded.last_read_at > chat_message_reads.last_read_at
             OR (excluded.last_read_at = chat_message_reads.last_read_at
                 AND excluded.last_read_message_id > chat_message_reads.last_read_message_id)))
"""


class SqliteMessageRepository:
    """Chat messages and per-user read watermarks."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, chat_id: int, user_id: str | None, message: str) -> dict:
        now = utc_now_iso()
        async with self.db.execute(
            "INSERT INTO chat_messages (chat_id, user_id, message, created_at) VALUES (?, ?, ?, ?)",
            (chat_id, user_id, message, now),
        ) as cur:
            message_id = cur.lastrowid
        await self.db.commit()
        return {"id": message_id, "chat_id": chat_id, "user_id": user_id, "message": message, "created_at": now}

    async def get_latest(self, chat_id: int) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM chat_messages WHERE chat_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (chat_id,),
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_page(
        self, chat_id: int, limit: int, before: str | None = None, before_id: int | None = None,
    ) -> list[dict]:
        """Newest ``limit`` messages strictly before ``before``, newest first.

        With ``before_id`` the cursor is the full (created_at, id) position, so
        messages sharing the cursor's timestamp are paged past by id.
        """
        if before and before_id is not None:
            query = """SELECT * FROM chat_messages
                       WHERE chat_id = ? AND (created_at < ? OR (created_at = ? AND id < ?))
                       ORDER BY created_at DESC, id DESC LIMIT ?"""
            params: tuple = (chat_id, before, before, before_id, limit)
        elif before:
            query = """SELECT * FROM chat_messages
                       WHERE chat_id = ? AND created_at < ?
                       ORDER BY created_at DESC, id DESC LIMIT ?"""
            params = (chat_id, before, limit)
        else:
            query = """SELECT * FROM chat_messages
                       WHERE chat_id = ?
                       ORDER BY created_at DESC, id DESC LIMIT ?"""
            params = (chat_id, limit)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def move_messages(self, from_chat_id: int, to_chat_id: int) -> int:
        async with self.db.execute(
            "UPDATE chat_messages SET chat_id = ? WHERE chat_id = ?",
            (to_chat_id, from_chat_id),
        ) as cur:
            moved = cur.rowcount
        await self.db.commit()
        return moved

    # ── Unread counting ────────────────────────────────────────────

    async def count_unread(self, chat_id: int, user_id: str) -> int:
        async with self.db.execute(
            f"""SELECT COUNT(*) FROM chat_messages m
                LEFT JOIN chat_message_reads r ON r.chat_id = m.chat_id AND r.user_id = ?
                WHERE m.chat_id = ?
                  AND (m.user_id IS NULL OR m.user_id != ?)
                  AND {_AFTER_WATERMARK}""",
            (user_id, chat_id, user_id),
        ) as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def count_unread_for_user(self, user_id: str) -> dict[int, int]:
        """Unread counts for every chat the user participates in, in one query."""
        async with self.db.execute(
            f"""SELECT p.chat_id AS chat_id, COUNT(m.id) AS unread
                FROM chat_participants p
                LEFT JOIN chat_message_reads r ON r.chat_id = p.chat_id AND r.user_id = p.user_id
                LEFT JOIN chat_messages m ON m.chat_id = p.chat_id
                    AND (m.user_id IS NULL OR m.user_id != p.user_id)
                    AND {_AFTER_WATERMARK}
                WHERE p.user_id = ?
                GROUP BY p.chat_id""",
            (user_id,),
        ) as cur:
            return {int(r["chat_id"]): int(r["unread"]) for r in await cur.fetchall()}

    # ── Watermarks ─────────────────────────────────────────────────

    async def get_read(self, chat_id: int, user_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM chat_message_reads WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        ) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_reads(self, chat_id: int) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM chat_message_reads WHERE chat_id = ? ORDER BY id",
            (chat_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def upsert_read(
        self, chat_id: int, user_id: str, message_id: int | None, message_at: str | None,
    ) -> None:
        await self.db.execute(
            f"""INSERT INTO chat_message_reads (chat_id, user_id, last_read_message_id, last_read_at, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(chat_id, user_id) DO UPDATE SET
                 last_read_message_id=excluded.last_read_message_id,
                 last_read_at=excluded.last_read_at,
                 updated_at=excluded.updated_at
               WHERE {_WATERMARK_ADVANCES}""",
            (chat_id, user_id, message_id, message_at, utc_now_iso()),
        )
        await self.db.commit()

    async def delete_read(self, chat_id: int, user_id: str) -> None:
        await self.db.execute(
            "DELETE FROM chat_message_reads WHERE chat_id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        await self.db.commit()
