"""Datetime and lifetime helpers used by providers and the state cache."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_DURATION_PART = re.compile(r"(\d+)([hms])")
_DURATION_FULL = re.compile(r"^(?:\d+[hms])+$")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO8601 timestamp, normalising naive values to UTC."""

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_lifetime(value: str) -> timedelta:
    """Parse ``12h0m0s``-style durations (any subset of h/m/s, in any order)."""

    normalized = (value or "").strip().lower()
    if not _DURATION_FULL.match(normalized):
        raise ValueError(f"invalid lifetime {value!r}, expected e.g. 12h or 1h30m")
    seconds = sum(int(amount) * _UNIT_SECONDS[unit] for amount, unit in _DURATION_PART.findall(normalized))
    return timedelta(seconds=seconds)


def format_lifetime(value: timedelta) -> str:
    """Render a duration as ``<h>h<m>m<s>s``."""

    total = int(value.total_seconds())
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours}h{minutes}m{seconds}s"
