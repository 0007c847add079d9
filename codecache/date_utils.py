"""Shared timestamp normalization helpers.

Modification times are kept at microsecond precision in UTC and persisted as
ISO-8601 text with a `Z` suffix, so that a value read back from the store
compares equal to the one produced by a fresh `stat()` of an unchanged file.
"""
from __future__ import annotations

from datetime import datetime, timezone


def mtime_from_ns(mtime_ns: int) -> datetime:
    """Build a UTC datetime from `st_mtime_ns` without float rounding."""
    micros = int(mtime_ns) // 1000
    seconds, remainder = divmod(micros, 1_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=remainder)


def format_mtime(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_mtime(token: str | None) -> datetime | None:
    cleaned = (token or "").strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
