"""
Bridges from ``WorkflowConfig`` to kernel inputs.

The kernel never imports ``replenishment_config``; these helpers turn the
frozen config sections into the objects kernel services take.
"""

from __future__ import annotations

from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo

from replenishment_config.loader import parse_clock_time
from replenishment_config.schema import WorkflowConfig
from replenishment_kernel.domain.working_hours import BusinessWindow


def business_window(config: WorkflowConfig) -> BusinessWindow:
    section = config.business_window
    return BusinessWindow(
        start=parse_clock_time(section.start),
        end=parse_clock_time(section.end),
        working_days=frozenset(section.working_days),
        timezone_name=section.timezone,
    )


def schedule_timezone(config: WorkflowConfig) -> tzinfo:
    """Timezone the auto-close cron expression is evaluated in."""
    name = config.business_window.timezone
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def lifecycle_options(config: WorkflowConfig) -> dict:
    """Keyword arguments for ``OrderLifecycleService``."""
    return {
        "window": business_window(config),
        "auto_close_hours": config.auto_close.working_hours,
        "require_receipt_evidence": config.evidence.require_receipt_evidence,
    }
