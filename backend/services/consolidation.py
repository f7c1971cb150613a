"""Consolidation jobs: heal what concurrent resolution and legacy data left behind.

Every job is idempotent. Running a job twice in a row reports zero changes on
the second run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from backend import config
from backend.date_utils import format_datetime_utc
from backend.errors import ConflictError
from backend.observability import record_consolidation, start_span
from backend.services.access_guard import AccessGuard
from backend.services.integrity import DUPLICATE_SPACE_LINK

logger = logging.getLogger("luna.consolidation")


@dataclass
class JobReport:
    job: str
    changes: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"job": self.job, "changes": self.changes, "details": self.details}


def _watermark_key(read: dict | None) -> tuple[str, int]:
    if not read or read.get("last_read_message_id") is None:
        return ("", 0)
    return (read.get("last_read_at") or "", int(read["last_read_message_id"]))


class ConsolidationJobs:
    def __init__(self, chats, messages, guard: AccessGuard, reports, orphan_grace_seconds: int | None = None):
        self.chats = chats
        self.messages = messages
        self.guard = guard
        self.reports = reports
        self.orphan_grace_seconds = (
            config.ORPHAN_CHAT_GRACE_SECONDS if orphan_grace_seconds is None else orphan_grace_seconds
        )

    @property
    def jobs(self) -> dict[str, Any]:
        return {
            "collapse_duplicate_links": self.collapse_duplicate_links,
            "merge_duplicate_dm_chats": self.merge_duplicate_dm_chats,
            "heal_ghost_memberships": self.heal_ghost_memberships,
            "remove_orphan_chats": self.remove_orphan_chats,
        }

    def _finish(self, report: JobReport) -> JobReport:
        record_consolidation(report.job, report.changes)
        logger.info("Consolidation %s: %d change(s)", report.job, report.changes)
        return report

    async def collapse_duplicate_links(self) -> JobReport:
        """Keep the earliest link per space and delete the rest."""
        report = JobReport("collapse_duplicate_links")
        for space_id in await self.chats.list_spaces_with_duplicate_links():
            links = await self.chats.list_links_for_space(space_id)
            extras = links[1:]
            deleted = await self.chats.delete_links([link["id"] for link in extras])
            if deleted:
                report.changes += deleted
                report.details.append({
                    "space_id": space_id,
                    "kept_chat_id": links[0]["chat_id"],
                    "dropped_chat_ids": [link["chat_id"] for link in extras],
                })
        await self.reports.resolve_open(DUPLICATE_SPACE_LINK)
        return self._finish(report)

    async def merge_duplicate_dm_chats(self) -> JobReport:
        """Fold every DM chat into the oldest chat with the same participant pair."""
        report = JobReport("merge_duplicate_dm_chats")
        groups: dict[tuple[str, str], list[dict]] = {}
        for row in await self.chats.list_dm_chats():
            groups.setdefault((row["user_a"], row["user_b"]), []).append(row)

        for pair, rows in groups.items():
            if len(rows) < 2:
                continue
            keeper = int(rows[0]["id"])
            for loser in rows[1:]:
                moved = await self._merge_chat(int(loser["id"]), keeper)
                report.changes += 1
                report.details.append({
                    "pair": list(pair), "kept_chat_id": keeper, "merged_chat_id": loser["id"], "moved_messages": moved,
                })
        return self._finish(report)

    async def _merge_chat(self, loser_id: int, keeper_id: int) -> int:
        moved = await self.messages.move_messages(loser_id, keeper_id)

        for read in await self.messages.list_reads(loser_id):
            kept = await self.messages.get_read(keeper_id, read["user_id"])
            if kept is None or _watermark_key(read) > _watermark_key(kept):
                await self.messages.upsert_read(
                    keeper_id, read["user_id"], read.get("last_read_message_id"), read.get("last_read_at"),
                )
            await self.messages.delete_read(loser_id, read["user_id"])

        participants = await self.chats.list_participants(loser_id)
        for participant in participants:
            if await self.chats.get_participant(keeper_id, participant["user_id"]):
                continue
            try:
                await self.chats.insert_participant(keeper_id, participant["user_id"], "merge")
            except ConflictError:
                logger.debug("Participant %s already joined chat %s", participant["user_id"], keeper_id)
        await self.chats.delete_participants(loser_id, [p["user_id"] for p in participants])

        await self.chats.repoint_links(loser_id, keeper_id)
        await self.chats.delete_chat(loser_id)
        logger.info("Merged DM chat %s into %s (%d message(s) moved)", loser_id, keeper_id, moved)
        return moved

    async def heal_ghost_memberships(self) -> JobReport:
        report = JobReport("heal_ghost_memberships")
        for row in await self.chats.list_parent_memberships():
            if await self.guard.heal_ghost_membership(row["user_id"], row["space_id"]):
                report.changes += 1
                report.details.append({"user_id": row["user_id"], "space_id": row["space_id"]})
        return self._finish(report)

    async def remove_orphan_chats(self, now: datetime | None = None) -> JobReport:
        """Delete chats with no link and no messages that are older than the grace period."""
        report = JobReport("remove_orphan_chats")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=self.orphan_grace_seconds)
        for chat in await self.chats.list_orphan_chats(format_datetime_utc(cutoff)):
            await self.chats.delete_chat(int(chat["id"]))
            report.changes += 1
            report.details.append({"chat_id": chat["id"]})
        return self._finish(report)

    async def run(self, job: str) -> JobReport:
        if job not in self.jobs:
            raise ValueError(f"Unknown consolidation job: {job}")
        with start_span("chat.consolidate", {"luna.job": job}):
            return await self.jobs[job]()

    async def run_all(self) -> list[JobReport]:
        return [await self.run(name) for name in self.jobs]
