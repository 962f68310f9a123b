# salonbook/core/time_range.py
"""
Pure helpers for slot arithmetic.

All instants are handled as timezone-aware UTC datetimes. Naive datetimes are
interpreted as UTC. Intervals are half-open: ``[start, end)``.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def end_of(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap test; touching boundaries do not overlap."""
    return a_start < b_end and b_start < a_end


def time_to_minutes(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if minutes < 0 or minutes >= 24 * 60:
        raise ValueError(f"minutes out of range for a time of day: {minutes}")
    return time(hour=minutes // 60, minute=minutes % 60)


def minutes_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 60)


@dataclass(frozen=True)
class TimeRange:
    """A half-open ``[start, end)`` interval of UTC instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end <= self.start:
            raise ValueError("TimeRange end must be after start")

    @classmethod
    def from_duration(cls, start: datetime, duration_minutes: int) -> "TimeRange":
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        start = ensure_utc(start)
        return cls(start, end_of(start, duration_minutes))

    @property
    def duration_minutes(self) -> int:
        return minutes_between(self.start, self.end)

    def overlaps(self, other: "TimeRange") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, instant: datetime) -> bool:
        instant = ensure_utc(instant)
        return self.start <= instant < self.end

    def is_past(self, now: Optional[datetime] = None) -> bool:
        return self.start < ensure_utc(now or utcnow())
