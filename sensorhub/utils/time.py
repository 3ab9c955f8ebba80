"""
Time Helpers
============

Every timestamp the sensor hub stores or compares is timezone-aware UTC.
Naive datetimes coming from payloads or query strings are taken to be UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat(timespec="seconds")


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def parse_iso(text: str) -> datetime:
    """
    Parse an ISO 8601 string into an aware UTC datetime.

    A trailing ``Z`` is accepted for UTC. Raises ValueError when ``text`` is
    not ISO 8601.
    """
    text = text.strip()
    if text[-1:] in ("Z", "z"):
        text = f"{text[:-1]}+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def coerce_datetime(value: Any) -> datetime | None:
    """Datetime or ISO string to aware UTC; ``None`` for anything unusable."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return parse_iso(value)
        except ValueError:
            return None
    return None
