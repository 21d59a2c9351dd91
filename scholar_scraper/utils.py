"""
Shared utility functions used across the codebase.

This module centralizes common helpers to avoid duplication.
"""
from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Timezone-aware current UTC time, second precision."""
    return datetime.now(UTC).replace(microsecond=0)


def utc_now_iso_z(dt: datetime | None = None) -> str:
    """
    Return a UTC ISO 8601 string with 'Z' suffix.

    If dt is provided, converts it to UTC first.
    If dt is None, uses current UTC time.

    Example: "2025-01-15T14:30:00Z"
    """
    d = dt or datetime.now(UTC)
    if d.tzinfo is None:
        d = d.replace(tzinfo=UTC)
    else:
        d = d.astimezone(UTC)
    return d.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_iso_z(iso: str | None) -> datetime | None:
    """Inverse of utc_now_iso_z; returns None for empty or unparseable input."""
    if not iso:
        return None
    s = iso.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


__all__ = [
    "utc_now",
    "utc_now_iso_z",
    "parse_iso_z",
]
