"""Domain errors shared by repositories, services and routers."""
from __future__ import annotations

from typing import Any


class LunaError(Exception):
    """Base class for domain errors."""


class NotFoundError(LunaError):
    """A space, chat or user does not exist. Surfaced as 404."""


class ForbiddenError(LunaError):
    """Access denied. Surfaced as 403."""


class ConflictError(LunaError):
    """A uniqueness constraint rejected an insert.

    Repositories raise this for every store backend so callers can tell a lost
    insert race apart from any other failure. Services recover from it and
    never let it reach a caller.
    """

    def __init__(self, table: str, detail: str = ""):
        super().__init__(f"unique constraint violated on {table}: {detail}".rstrip(": "))
        self.table = table
        self.detail = detail


class IntegrityViolation(LunaError):
    """A stored invariant does not hold (duplicate links, DM overflow).

    Not raised to callers; carried to the integrity reporter instead.
    """

    def __init__(self, kind: str, subject_id: str, detail: dict[str, Any] | None = None):
        super().__init__(f"{kind} on {subject_id}")
        self.kind = kind
        self.subject_id = subject_id
        self.detail = detail or {}
