"""UTC helpers shared by blackout and offer-schedule checks."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive values (SQLite drops offsets) as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sunday_first_weekday(moment: datetime) -> int:
    # datetime.weekday() is Monday=0; schedule payloads use Sunday=0.
    return (moment.weekday() + 1) % 7


def hour_in_range(hour: int, time_range: Any) -> bool:
    """``{"start": h, "end": h}`` is half-open: start inclusive, end exclusive."""

    if not isinstance(time_range, Mapping):
        return False
    start = time_range.get("start")
    end = time_range.get("end")
    if start is None or end is None:
        return False
    return start <= hour < end


__all__ = ["as_utc", "hour_in_range", "sunday_first_weekday", "utcnow"]
