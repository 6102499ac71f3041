# storefront/utils/dates.py
from __future__ import annotations
from datetime import datetime, timezone


def utcnow() -> datetime:
    # stored datetimes are naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso8601(s: str | None):
    if not s:
        return None
    s = str(s).strip()
    # support trailing 'Z' (UTC)
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def require_iso8601(data: dict, key: str, required: bool = False):
    """Parse ``data[key]``; ValueError on a bad value or a missing required one."""
    raw = data.get(key)
    if raw in (None, ""):
        if required:
            raise ValueError(f"{key} is required")
        return None
    dt = parse_iso8601(raw)
    if dt is None:
        raise ValueError(f"Invalid datetime format for {key}")
    return dt


def iso(dt):
    return dt.isoformat() if dt else None
