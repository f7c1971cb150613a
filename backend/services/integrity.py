"""Integrity violation reporting.

Violations are never raised to callers. They are logged, counted and stored
as open reports for the next consolidation pass to heal.
"""
from __future__ import annotations

import logging

from backend.errors import IntegrityViolation
from backend.observability import record_integrity_violation

logger = logging.getLogger("luna.integrity")

DUPLICATE_SPACE_LINK = "duplicate_space_link"
DM_PARTICIPANT_OVERFLOW = "dm_participant_overflow"


class IntegrityReporter:
    def __init__(self, reports):
        self.reports = reports

    async def report(self, violation: IntegrityViolation) -> int:
        logger.warning(
            "Integrity violation %s on %s: %s",
            violation.kind, violation.subject_id, violation.detail,
        )
        record_integrity_violation(violation.kind)
        return await self.reports.record(violation.kind, violation.subject_id, violation.detail)
