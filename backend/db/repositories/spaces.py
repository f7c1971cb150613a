"""SQLite implementation of SpaceRepository."""
from __future__ import annotations

import uuid

import aiosqlite

from backend.date_utils import utc_now_iso


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def _row_to_space(row: aiosqlite.Row, parent_ids: list[str] | None = None) -> dict:
    space = dict(row)
    space["archived"] = bool(space.get("archived"))
    space["parent_ids"] = parent_ids or []
    return space


class SqliteSpaceRepository:
    """Spaces and their multi-parent hierarchy."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, space_data: dict) -> dict:
        space_id = space_data.get("id") or uuid.uuid4().hex
        await self.db.execute(
            """INSERT INTO spaces (id, user_id, name, category, archived, external_ref, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                space_id,
                space_data["user_id"],
                space_data["name"],
                space_data["category"],
                1 if space_data.get("archived") else 0,
                space_data.get("external_ref"),
                space_data.get("created_at") or utc_now_iso(),
            ),
        )
        await self.db.commit()
        if space_data.get("parent_ids"):
            await self.set_parents(space_id, list(space_data["parent_ids"]))
        return await self.get_by_id(space_id) or {}

    async def get_by_id(self, space_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM spaces WHERE id = ?", (space_id,)) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        parents = await self.get_parent_map([space_id])
        return _row_to_space(row, parents.get(space_id))

    async def _hydrate(self, rows: list[aiosqlite.Row]) -> list[dict]:
        parents = await self.get_parent_map([r["id"] for r in rows])
        return [_row_to_space(r, parents.get(r["id"])) for r in rows]

    async def get_many(self, space_ids: list[str]) -> list[dict]:
        if not space_ids:
            return []
        async with self.db.execute(
            f"SELECT * FROM spaces WHERE id IN ({_placeholders(len(space_ids))}) ORDER BY created_at, id",
            tuple(space_ids),
        ) as cur:
            rows = await cur.fetchall()
        return await self._hydrate(rows)

    async def list_owned(
        self, user_id: str, category: str | None = None, include_archived: bool = False,
    ) -> list[dict]:
        query = "SELECT * FROM spaces WHERE user_id = ?"
        params: list = [user_id]
        if category:
            query += " AND category = ?"
            params.append(category)
        if not include_archived:
            query += " AND archived = 0"
        query += " ORDER BY created_at, id"
        async with self.db.execute(query, tuple(params)) as cur:
            rows = await cur.fetchall()
        return await self._hydrate(rows)

    async def list_addressed_to(self, names: list[str], exclude_owner_id: str) -> list[dict]:
        """User spaces owned by someone else whose name is one of ``names``."""
        names = [n for n in names if n]
        if not names:
            return []
        async with self.db.execute(
            f"""SELECT * FROM spaces
                WHERE category = 'user' AND archived = 0 AND user_id != ?
                  AND name IN ({_placeholders(len(names))})
                ORDER BY created_at, id""",
            (exclude_owner_id, *names),
        ) as cur:
            rows = await cur.fetchall()
        return await self._hydrate(rows)

    async def list_by_external_ref(self, external_ref: str, category: str = "project") -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM spaces WHERE external_ref = ? AND category = ? ORDER BY created_at, id",
            (external_ref, category),
        ) as cur:
            rows = await cur.fetchall()
        return await self._hydrate(rows)

    async def find_direct_space(self, owner_id: str, names: list[str]) -> dict | None:
        names = [n for n in names if n]
        if not names:
            return None
        async with self.db.execute(
            f"""SELECT * FROM spaces
                WHERE user_id = ? AND category = 'user' AND archived = 0
                  AND name IN ({_placeholders(len(names))})
                ORDER BY created_at, id LIMIT 1""",
            (owner_id, *names),
        ) as cur:
            row = await cur.fetchone()
        return _row_to_space(row) if row else None

    async def set_parents(self, space_id: str, parent_ids: list[str]) -> None:
        await self.db.execute("DELETE FROM space_parents WHERE space_id = ?", (space_id,))
        for parent_id in dict.fromkeys(parent_ids):
            if parent_id == space_id:
                continue
            await self.db.execute(
                "INSERT OR IGNORE INTO space_parents (space_id, parent_id) VALUES (?, ?)",
                (space_id, parent_id),
            )
        await self.db.commit()

    async def get_parent_map(self, space_ids: list[str]) -> dict[str, list[str]]:
        if not space_ids:
            return {}
        async with self.db.execute(
            f"""SELECT space_id, parent_id FROM space_parents
                WHERE space_id IN ({_placeholders(len(space_ids))})
                ORDER BY space_id, parent_id""",
            tuple(space_ids),
        ) as cur:
            rows = await cur.fetchall()
        result: dict[str, list[str]] = {}
        for row in rows:
            result.setdefault(row["space_id"], []).append(row["parent_id"])
        return result
