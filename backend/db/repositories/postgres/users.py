"""PostgreSQL implementation of UserRepository."""
from __future__ import annotations

import uuid

import asyncpg

from backend.date_utils import utc_now_iso


class PostgresUserRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def create(self, user_data: dict) -> dict:
        user_id = user_data.get("id") or uuid.uuid4().hex
        await self.db.execute(
            "INSERT INTO users (id, name, email, created_at) VALUES ($1, $2, $3, $4)",
            user_id, user_data.get("name", ""), user_data.get("email", ""),
            user_data.get("created_at", utc_now_iso()),
        )
        return await self.get_by_id(user_id) or {}

    async def get_by_id(self, user_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return dict(row) if row else None

    async def get_many(self, user_ids: list[str]) -> list[dict]:
        if not user_ids:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM users WHERE id = ANY($1::text[]) ORDER BY created_at, id",
            list(user_ids),
        )
        return [dict(r) for r in rows]

    async def find_by_name_or_email(self, value: str, exclude_user_id: str | None = None) -> dict | None:
        if not value:
            return None
        row = await self.db.fetchrow(
            """SELECT * FROM users
               WHERE (email = $1 OR name = $1) AND ($2::text IS NULL OR id != $2)
               ORDER BY created_at, id LIMIT 1""",
            value, exclude_user_id,
        )
        return dict(row) if row else None
