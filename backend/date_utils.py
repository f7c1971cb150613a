"""Shared timestamp helpers.

Every stored timestamp is a UTC ISO-8601 string with microsecond precision so
that lexical order equals chronological order in both store backends.
"""
from __future__ import annotations

from datetime import datetime, timezone


def format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return format_datetime_utc(datetime.now(timezone.utc))


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def normalize_timestamp(value: str | None) -> str | None:
    """Normalize a client-supplied timestamp (pagination cursor) to storage form.

    Returns None for empty or unparseable input.
    """
    parsed = _parse_datetime_token(value or "")
    if parsed is None:
        return None
    return format_datetime_utc(parsed)
