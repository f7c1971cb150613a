"""SQLite implementation of UserRepository."""
from __future__ import annotations

import uuid

import aiosqlite

from backend.date_utils import utc_now_iso


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class SqliteUserRepository:
    """User identity lookups. Profile CRUD lives elsewhere."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, user_data: dict) -> dict:
        user_id = user_data.get("id") or uuid.uuid4().hex
        now = utc_now_iso()
        await self.db.execute(
            "INSERT INTO users (id, name, email, created_at) VALUES (?, ?, ?, ?)",
            (user_id, user_data.get("name", ""), user_data.get("email", ""), user_data.get("created_at", now)),
        )
        await self.db.commit()
        return await self.get_by_id(user_id) or {}

    async def get_by_id(self, user_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def get_many(self, user_ids: list[str]) -> list[dict]:
        if not user_ids:
            return []
        async with self.db.execute(
            f"SELECT * FROM users WHERE id IN ({_placeholders(len(user_ids))}) ORDER BY created_at, id",
            tuple(user_ids),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def find_by_name_or_email(self, value: str, exclude_user_id: str | None = None) -> dict | None:
        """Earliest user whose email or name equals ``value`` exactly."""
        if not value:
            return None
        query = "SELECT * FROM users WHERE (email = ? OR name = ?)"
        params: list = [value, value]
        if exclude_user_id:
            query += " AND id != ?"
            params.append(exclude_user_id)
        query += " ORDER BY created_at, id LIMIT 1"
        async with self.db.execute(query, tuple(params)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None
