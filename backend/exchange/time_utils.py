from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Every timestamp column stores naive UTC; the API speaks ISO-8601 with a trailing Z.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Client timestamp -> naive UTC.

    "" and None give None. A value without an offset is taken as UTC.
    Raises ValueError for anything datetime.fromisoformat rejects.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def parse_meetup_time(value) -> Optional[datetime]:
    """
    Meetup time from a request body. None means "not arranged yet".

    Raises ValueError for non-strings and blank or malformed strings.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("meetup time must be a string")
    when = parse_iso_datetime(value)
    if when is None:
        raise ValueError("meetup time is blank")
    return when


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to whole-second ISO-8601 UTC ("2026-05-01T15:00:00Z"). Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
