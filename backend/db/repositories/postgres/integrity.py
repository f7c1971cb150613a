"""PostgreSQL implementation of IntegrityReportRepository."""
from __future__ import annotations

import json

import asyncpg

from backend.date_utils import utc_now_iso


class PostgresIntegrityReportRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def record(self, kind: str, subject_id: str, detail: dict) -> int:
        existing = await self.db.fetchval(
            "SELECT id FROM integrity_reports WHERE kind = $1 AND subject_id = $2 AND resolved_at IS NULL",
            kind, subject_id,
        )
        if existing:
            return existing
        return await self.db.fetchval(
            """INSERT INTO integrity_reports (kind, subject_id, detail_json, created_at)
               VALUES ($1, $2, $3, $4) RETURNING id""",
            kind, subject_id, json.dumps(detail, default=str), utc_now_iso(),
        )

    async def list_open(self, kind: str | None = None) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT * FROM integrity_reports
               WHERE resolved_at IS NULL AND ($1::text IS NULL OR kind = $1)
               ORDER BY id""",
            kind,
        )
        return [dict(r) for r in rows]

    async def resolve_open(self, kind: str | None = None) -> int:
        status = await self.db.execute(
            """UPDATE integrity_reports SET resolved_at = $1
               WHERE resolved_at IS NULL AND ($2::text IS NULL OR kind = $2)""",
            utc_now_iso(), kind,
        )
        try:
            return int(status.rsplit(" ", 1)[-1])
        except ValueError:
            return 0
