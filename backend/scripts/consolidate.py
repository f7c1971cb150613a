#!/usr/bin/env python3
"""Run chat consolidation jobs against the configured database.

Usage:
  python -m backend.scripts.consolidate
  python -m backend.scripts.consolidate --job merge_duplicate_dm_chats
  python -m backend.scripts.consolidate --json
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging

from backend.db import connection, migrations
from backend.services.consolidation import ConsolidationJobs
from backend.services.container import build_services
from backend.services.notifications import LoggingNotificationSink

JOB_NAMES = [
    "collapse_duplicate_links",
    "merge_duplicate_dm_chats",
    "heal_ghost_memberships",
    "remove_orphan_chats",
]


async def _run(job: str | None, as_json: bool) -> int:
    db = await connection.get_connection()
    try:
        await migrations.run_migrations(db)
        services = build_services(db, notifier=LoggingNotificationSink())
        jobs: ConsolidationJobs = services.consolidation
        reports = [await jobs.run(job)] if job else await jobs.run_all()
        open_reports = await services.reports.list_open()
    finally:
        await connection.close_connection()

    if as_json:
        print(json.dumps({
            "jobs": [r.to_dict() for r in reports],
            "openIntegrityReports": len(open_reports),
        }, indent=2, default=str))
    else:
        for report in reports:
            print(f"{report.job}: changes={report.changes}")
        print(f"open integrity reports: {len(open_reports)}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--job", choices=JOB_NAMES, default=None, help="Run a single job (default: all)")
    parser.add_argument("--json", action="store_true", help="Print job reports as JSON")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    return asyncio.run(_run(args.job, args.json))


if __name__ == "__main__":
    raise SystemExit(main())
