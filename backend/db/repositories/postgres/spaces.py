"""PostgreSQL implementation of SpaceRepository."""
from __future__ import annotations

import uuid

import asyncpg

from backend.date_utils import utc_now_iso


def _row_to_space(row: asyncpg.Record, parent_ids: list[str] | None = None) -> dict:
    space = dict(row)
    space["archived"] = bool(space.get("archived"))
    space["parent_ids"] = parent_ids or []
    return space


class PostgresSpaceRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def create(self, space_data: dict) -> dict:
        space_id = space_data.get("id") or uuid.uuid4().hex
        await self.db.execute(
            """INSERT INTO spaces (id, user_id, name, category, archived, external_ref, created_at)
               VALUES ($1, $2, $3, $4, $5, $6, $7)""",
            space_id,
            space_data["user_id"],
            space_data["name"],
            space_data["category"],
            bool(space_data.get("archived")),
            space_data.get("external_ref"),
            space_data.get("created_at") or utc_now_iso(),
        )
        if space_data.get("parent_ids"):
            await self.set_parents(space_id, list(space_data["parent_ids"]))
        return await self.get_by_id(space_id) or {}

    async def get_by_id(self, space_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM spaces WHERE id = $1", space_id)
        if not row:
            return None
        parents = await self.get_parent_map([space_id])
        return _row_to_space(row, parents.get(space_id))

    async def _hydrate(self, rows: list[asyncpg.Record]) -> list[dict]:
        parents = await self.get_parent_map([r["id"] for r in rows])
        return [_row_to_space(r, parents.get(r["id"])) for r in rows]

    async def get_many(self, space_ids: list[str]) -> list[dict]:
        if not space_ids:
            return []
        rows = await self.db.fetch(
            "SELECT * FROM spaces WHERE id = ANY($1::text[]) ORDER BY created_at, id",
            list(space_ids),
        )
        return await self._hydrate(rows)

    async def list_owned(
        self, user_id: str, category: str | None = None, include_archived: bool = False,
    ) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT * FROM spaces
               WHERE user_id = $1
                 AND ($2::text IS NULL OR category = $2)
                 AND ($3 OR archived = FALSE)
               ORDER BY created_at, id""",
            user_id, category, include_archived,
        )
        return await self._hydrate(rows)

    async def list_addressed_to(self, names: list[str], exclude_owner_id: str) -> list[dict]:
        names = [n for n in names if n]
        if not names:
            return []
        rows = await self.db.fetch(
            """SELECT * FROM spaces
               WHERE category = 'user' AND archived = FALSE AND user_id != $1
                 AND name = ANY($2::text[])
               ORDER BY created_at, id""",
            exclude_owner_id, names,
        )
        return await self._hydrate(rows)

    async def list_by_external_ref(self, external_ref: str, category: str = "project") -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM spaces WHERE external_ref = $1 AND category = $2 ORDER BY created_at, id",
            external_ref, category,
        )
        return await self._hydrate(rows)

    async def find_direct_space(self, owner_id: str, names: list[str]) -> dict | None:
        names = [n for n in names if n]
        if not names:
            return None
        row = await self.db.fetchrow(
            """SELECT * FROM spaces
               WHERE user_id = $1 AND category = 'user' AND archived = FALSE
                 AND name = ANY($2::text[])
               ORDER BY created_at, id LIMIT 1""",
            owner_id, names,
        )
        return _row_to_space(row) if row else None

    async def set_parents(self, space_id: str, parent_ids: list[str]) -> None:
        async with self.db.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM space_parents WHERE space_id = $1", space_id)
                for parent_id in dict.fromkeys(parent_ids):
                    if parent_id == space_id:
                        continue
                    await conn.execute(
                        """INSERT INTO space_parents (space_id, parent_id) VALUES ($1, $2)
                           ON CONFLICT DO NOTHING""",
                        space_id, parent_id,
                    )

    async def get_parent_map(self, space_ids: list[str]) -> dict[str, list[str]]:
        if not space_ids:
            return {}
        rows = await self.db.fetch(
            """SELECT space_id, parent_id FROM space_parents
               WHERE space_id = ANY($1::text[])
               ORDER BY space_id, parent_id""",
            list(space_ids),
        )
        result: dict[str, list[str]] = {}
        for row in rows:
            result.setdefault(row["space_id"], []).append(row["parent_id"])
        return result
