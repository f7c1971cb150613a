"""SQLite implementation of IntegrityReportRepository."""
from __future__ import annotations

import json

import aiosqlite

from backend.date_utils import utc_now_iso


class SqliteIntegrityReportRepository:
    """Open integrity violations awaiting a consolidation pass."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def record(self, kind: str, subject_id: str, detail: dict) -> int:
        async with self.db.execute(
            "SELECT id FROM integrity_reports WHERE kind = ? AND subject_id = ? AND resolved_at IS NULL",
            (kind, subject_id),
        ) as cur:
            row = await cur.fetchone()
            if row:
                return row[0]

        async with self.db.execute(
            "INSERT INTO integrity_reports (kind, subject_id, detail_json, created_at) VALUES (?, ?, ?, ?)",
            (kind, subject_id, json.dumps(detail, default=str), utc_now_iso()),
        ) as cur:
            report_id = cur.lastrowid
        await self.db.commit()
        return report_id or 0

    async def list_open(self, kind: str | None = None) -> list[dict]:
        if kind:
            query = "SELECT * FROM integrity_reports WHERE resolved_at IS NULL AND kind = ? ORDER BY id"
            params: tuple = (kind,)
        else:
            query = "SELECT * FROM integrity_reports WHERE resolved_at IS NULL ORDER BY id"
            params = ()
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def resolve_open(self, kind: str | None = None) -> int:
        query = "UPDATE integrity_reports SET resolved_at = ? WHERE resolved_at IS NULL"
        params: tuple = (utc_now_iso(),)
        if kind:
            query += " AND kind = ?"
            params += (kind,)
        async with self.db.execute(query, params) as cur:
            resolved = cur.rowcount
        await self.db.commit()
        return resolved
