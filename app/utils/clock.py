from __future__ import annotations

"""Timezone-aware time helpers shared by the entitlement services."""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (sqlite drops tzinfo); convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from `now` until `moment` (floored; negative when past)."""
    delta = (as_utc(moment) - as_utc(now)).total_seconds()
    return int(delta // 1)


__all__ = ["Clock", "utcnow", "as_utc", "seconds_until"]
