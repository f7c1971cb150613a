"""PostgreSQL implementation of MessageRepository."""
from __future__ import annotations

import asyncpg

from backend.date_utils import utc_now_iso

_AFTER_WATERMARK = """
    (r.last_read_message_id IS NULL
     OR m.created_at > r.last_read_at
     OR (m.created_at = r.last_read_at AND m.id > r.last_read_message_id))
"""

_WATERMARK_ADVANCES = """
    chat_message_reads.last_read_message_id IS NULL
    OR (EXCLUDED.last_read_message_id IS NOT NULL
        AND (EXCLUDED.last_read_at > chat_message_reads.last_read_at
             OR (EXCLUDED.last_read_at = chat_message_reads.last_read_at
                 AND EXCLUDED.last_read_message_id > chat_message_reads.last_read_message_id)))
"""


class PostgresMessageRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def insert(self, chat_id: int, user_id: str | None, message: str) -> dict:
        now = utc_now_iso()
        message_id = await self.db.fetchval(
            """INSERT INTO chat_messages (chat_id, user_id, message, created_at)
               VALUES ($1, $2, $3, $4) RETURNING id""",
            chat_id, user_id, message, now,
        )
        return {"id": message_id, "chat_id": chat_id, "user_id": user_id, "message": message, "created_at": now}

    async def get_latest(self, chat_id: int) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM chat_messages WHERE chat_id = $1 ORDER BY created_at DESC, id DESC LIMIT 1",
            chat_id,
        )
        return dict(row) if row else None

    async def list_page(
        self, chat_id: int, limit: int, before: str | None = None, before_id: int | None = None,
    ) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT * FROM chat_messages
               WHERE chat_id = $1
                 AND ($2::text IS NULL
                      OR created_at < $2
                      OR ($4::bigint IS NOT NULL AND created_at = $2 AND id < $4))
               ORDER BY created_at DESC, id DESC LIMIT $3""",
            chat_id, before, limit, before_id,
        )
        return [dict(r) for r in rows]

    async def move_messages(self, from_chat_id: int, to_chat_id: int) -> int:
        status = await self.db.execute(
            "UPDATE chat_messages SET chat_id = $1 WHERE chat_id = $2", to_chat_id, from_chat_id,
        )
        try:
            return int(status.rsplit(" ", 1)[-1])
        except ValueError:
            return 0

    async def count_unread(self, chat_id: int, user_id: str) -> int:
        value = await self.db.fetchval(
            f"""SELECT COUNT(*) FROM chat_messages m
                LEFT JOIN chat_message_reads r ON r.chat_id = m.chat_id AND r.user_id = $1
                WHERE m.chat_id = $2
                  AND (m.user_id IS NULL OR m.user_id != $1)
                  AND {_AFTER_WATERMARK}""",
            user_id, chat_id,
        )
        return int(value or 0)

    async def count_unread_for_user(self, user_id: str) -> dict[int, int]:
        rows = await self.db.fetch(
            f"""SELECT p.chat_id AS chat_id, COUNT(m.id) AS unread
                FROM chat_participants p
                LEFT JOIN chat_message_reads r ON r.chat_id = p.chat_id AND r.user_id = p.user_id
                LEFT JOIN chat_messages m ON m.chat_id = p.chat_id
                    AND (m.user_id IS NULL OR m.user_id != p.user_id)
                    AND {_AFTER_WATERMARK}
                WHERE p.user_id = $1
                GROUP BY p.chat_id""",
            user_id,
        )
        return {int(r["chat_id"]): int(r["unread"]) for r in rows}

    async def get_read(self, chat_id: int, user_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM chat_message_reads WHERE chat_id = $1 AND user_id = $2", chat_id, user_id,
        )
        return dict(row) if row else None

    async def list_reads(self, chat_id: int) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM chat_message_reads WHERE chat_id = $1 ORDER BY id", chat_id,
        )
        return [dict(r) for r in rows]

    async def upsert_read(
        self, chat_id: int, user_id: str, message_id: int | None, message_at: str | None,
    ) -> None:
        await self.db.execute(
            f"""INSERT INTO chat_message_reads (chat_id, user_id, last_read_message_id, last_read_at, updated_at)
               VALUES ($1, $2, $3, $4, $5)
               ON CONFLICT(chat_id, user_id) DO UPDATE SET
                 last_read_message_id=EXCLUDED.last_read_message_id,
                 last_read_at=EXCLUDED.last_read_at,
                 updated_at=EXCLUDED.updated_at
               WHERE {_WATERMARK_ADVANCES}""",
            chat_id, user_id, message_id, message_at, utc_now_iso(),
        )

    async def delete_read(self, chat_id: int, user_id: str) -> None:
        await self.db.execute(
            "DELETE FROM chat_message_reads WHERE chat_id = $1 AND user_id = $2", chat_id, user_id,
        )
