# backend/parq/domain/time_window.py
"""
Half-open time window value type.

A window covers ``[start, end)``: two windows that merely touch
(``a.end == b.start``) do not overlap, so back-to-back bookings on the same
space are allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from ..core.exceptions import InvalidWindowException
from ..core.timezone_utils import ensure_utc

_SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True, order=True)
class TimeWindow:
    """Immutable ``[start, end)`` interval in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        start = ensure_utc(self.start)
        end = ensure_utc(self.end)
        if end <= start:
            raise InvalidWindowException(
                f"Window end {end.isoformat()} must be after start {start.isoformat()}",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def hours(self) -> Decimal:
        """Duration in hours as an exact decimal (used for pricing)."""
        return Decimal(int(self.duration.total_seconds())) / _SECONDS_PER_HOUR

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end

    def contains_instant(self, instant: datetime) -> bool:
        instant = ensure_utc(instant)
        return self.start <= instant < self.end

    def with_end(self, new_end: datetime) -> "TimeWindow":
        return TimeWindow(self.start, new_end)

    def remaining_after(self, instant: datetime) -> timedelta:
        """Time left in the window after ``instant`` (zero once it has elapsed)."""
        instant = ensure_utc(instant)
        if instant >= self.end:
            return timedelta(0)
        if instant <= self.start:
            return self.duration
        return self.end - instant

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"
