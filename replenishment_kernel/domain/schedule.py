"""
Cron evaluation for the auto-close job.

Contract:
    ``parse_cron`` / ``matches_cron`` / ``next_run_after`` are PURE -- no I/O,
    no clock reads.  The scheduler passes "now" in and sleeps until the
    returned instant.

Architecture: replenishment_kernel/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, lists, ranges (1-5), steps (*/5, 1-10/2).
    """

    expression: str = "* * * * *"
    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse one cron field.

    Raises:
        ValueError: syntactically invalid or out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()

        if "/" in part:
            range_part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")
            if range_part == "*":
                start, end = min_val, max_val
            elif "-" in range_part:
                s, e = range_part.split("-", 1)
                start, end = int(s), int(e)
            else:
                start, end = int(range_part), max_val
            values.update(v for v in range(start, end + 1, step) if min_val <= v <= max_val)

        elif part == "*":
            values.update(range(min_val, max_val + 1))

        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
            values.update(v for v in range(start, end + 1) if min_val <= v <= max_val)

        else:
            v = int(part)
            if v < min_val or v > max_val:
                raise ValueError(f"Value {v} outside range [{min_val}, {max_val}]")
            values.add(v)

    if not values:
        raise ValueError(f"Cron field '{field_str}' matches nothing")
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression.

    Raises:
        ValueError: malformed expression.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    return CronSpec(
        expression=expression.strip(),
        minutes=_parse_cron_field(parts[0], 0, 59),
        hours=_parse_cron_field(parts[1], 0, 23),
        days_of_month=_parse_cron_field(parts[2], 1, 31),
        months=_parse_cron_field(parts[3], 1, 12),
        days_of_week=_parse_cron_field(parts[4], 0, 6),
    )


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a (local) datetime matches a cron spec.

    Cron convention: 0=Sunday ... 6=Saturday; Python's weekday() is 0=Monday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def next_run_after(
    spec: CronSpec,
    after: datetime,
    tz: tzinfo = timezone.utc,
) -> datetime:
    """First instant strictly after ``after`` matching ``spec`` in ``tz`` (UTC out).

    Scans minute by minute, bounded to 366 days.

    Raises:
        ValueError: no match within 366 days (e.g. "0 0 31 2 *").
    """
    local = after.astimezone(tz)
    candidate = local.replace(second=0, microsecond=0) + timedelta(minutes=1)

    for _ in range(366 * 24 * 60):
        if matches_cron(spec, candidate):
            return candidate.astimezone(timezone.utc)
        candidate += timedelta(minutes=1)

    raise ValueError(f"No cron match for '{spec.expression}' within 366 days after {after}")
