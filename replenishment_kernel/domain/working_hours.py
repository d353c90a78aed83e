"""
Working-hours arithmetic (``replenishment_kernel.domain.working_hours``).

Responsibility
--------------
Computes auto-close deadlines as "N working hours after receipt" and counts
working hours between two instants.  A working hour is any clock hour inside
the business window (default 09:00-17:00) on a working day (default
Monday-Friday), evaluated in the window's timezone.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  Callers pass the instant in;
nothing here reads a clock.

Rules
-----
1. Normalize the start: before opening on a working day moves to that day's
   opening; at or after closing, or on a non-working day, moves to the next
   working day's opening.
2. Consume the remaining hours day by day, skipping non-working days
   entirely and clipping each day to the window.
3. A deadline that fits the current day finishes there, closing time
   included.  Only hours left over after closing carry into the next working
   day.

Example: Friday 09:00 + 8h consumes all of Friday and lands on Friday 17:00.
Friday 16:00 + 1h likewise lands on Friday 17:00; Friday 16:00 + 8h lands on
Monday 16:00 (1h Friday, 7h Monday).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo


_MAX_DAYS = 366 * 10


@dataclass(frozen=True)
class BusinessWindow:
    """Daily business window.

    ``working_days`` uses Python weekday numbers (Monday=0 ... Sunday=6).
    """

    start: time = time(9, 0)
    end: time = time(17, 0)
    working_days: frozenset[int] = frozenset({0, 1, 2, 3, 4})
    timezone_name: str = "UTC"

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"Business window start {self.start} must precede end {self.end}"
            )
        if not self.working_days:
            raise ValueError("Business window needs at least one working day")
        if any(d < 0 or d > 6 for d in self.working_days):
            raise ValueError(f"Invalid weekday in {sorted(self.working_days)}")

    @property
    def tz(self) -> tzinfo:
        if self.timezone_name.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone_name)

    @property
    def day_length(self) -> timedelta:
        return _combine(datetime(2000, 1, 1), self.end) - _combine(
            datetime(2000, 1, 1), self.start
        )

    def is_working_day(self, moment: datetime) -> bool:
        return moment.weekday() in self.working_days

    def opening(self, moment: datetime) -> datetime:
        return _combine(moment, self.start)

    def closing(self, moment: datetime) -> datetime:
        return _combine(moment, self.end)


DEFAULT_WINDOW = BusinessWindow()


def _combine(moment: datetime, at: time) -> datetime:
    return moment.replace(
        hour=at.hour, minute=at.minute, second=0, microsecond=0
    )


def _require_aware(moment: datetime) -> None:
    if moment.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {moment!r}")


def _next_opening(local: datetime, window: BusinessWindow) -> datetime:
    """Opening of the first working day strictly after ``local``'s date."""
    candidate = local
    for _ in range(_MAX_DAYS):
        candidate = candidate + timedelta(days=1)
        if window.is_working_day(candidate):
            return window.opening(candidate)
    raise ValueError("No working day found")  # pragma: no cover


def normalize_to_window(moment: datetime, window: BusinessWindow = DEFAULT_WINDOW) -> datetime:
    """Move ``moment`` forward to the nearest instant inside the window.

    Instants already inside ``[opening, closing)`` of a working day are
    returned unchanged (in the window's timezone).
    """
    _require_aware(moment)
    local = moment.astimezone(window.tz)
    if not window.is_working_day(local):
        return _next_opening(local, window)
    if local < window.opening(local):
        return window.opening(local)
    if local >= window.closing(local):
        return _next_opening(local, window)
    return local


def add_working_hours(
    start: datetime,
    hours: float,
    window: BusinessWindow = DEFAULT_WINDOW,
) -> datetime:
    """Return the instant ``hours`` working hours after ``start`` (UTC).

    Raises:
        ValueError: naive ``start`` or negative ``hours``.
    """
    if hours < 0:
        raise ValueError(f"hours must be >= 0, got {hours}")
    remaining = timedelta(hours=hours)
    current = normalize_to_window(start, window)

    for _ in range(_MAX_DAYS):
        available = window.closing(current) - current
        if remaining <= available:
            return (current + remaining).astimezone(timezone.utc)
        remaining -= available
        current = _next_opening(current, window)

    raise ValueError(f"Cannot add {hours} working hours: horizon exceeded")


def working_hours_between(
    start: datetime,
    end: datetime,
    window: BusinessWindow = DEFAULT_WINDOW,
) -> float:
    """Working hours elapsed from ``start`` to ``end`` (0 if end <= start)."""
    _require_aware(start)
    _require_aware(end)
    if end <= start:
        return 0.0

    end_local = end.astimezone(window.tz)
    current = normalize_to_window(start, window)
    total = timedelta()

    for _ in range(_MAX_DAYS):
        if current >= end_local:
            break
        day_end = min(window.closing(current), end_local)
        if day_end > current:
            total += day_end - current
        current = _next_opening(current, window)
    return total.total_seconds() / 3600
