"""
Wall-clock source and timezone policy.

All timestamps handled by the subscription engine are timezone-aware UTC.
Services take a Clock so tests can pin "now".
"""

from datetime import datetime, timezone
from typing import Any, Optional

from starlette.requests import Request


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[Any]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if getattr(value, "tzinfo", None) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    """System clock."""

    def now(self) -> datetime:
        return utc_now()


class FixedClock(Clock):
    """Clock pinned to a given instant; `advance` moves it forward."""

    def __init__(self, instant: datetime):
        self._instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, delta) -> datetime:
        self._instant = self._instant + delta
        return self._instant


system_clock = Clock()


def get_clock(request: Request) -> Clock:
    """FastAPI dependency; tests pin time through app.state.clock."""
    return getattr(request.app.state, "clock", None) or system_clock
