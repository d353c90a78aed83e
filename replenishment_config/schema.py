"""
WorkflowConfig schema.

Typed, frozen view of the workflow's tunables.  YAML is parsed into these
types by the loader; services receive the pieces they need through the
bridge helpers in ``replenishment_config.bridges``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BusinessWindowDef:
    """Daily working window; weekdays use Monday=0 ... Sunday=6."""

    start: str = "09:00"
    end: str = "17:00"
    working_days: tuple[int, ...] = (0, 1, 2, 3, 4)
    timezone: str = "UTC"


@dataclass(frozen=True)
class AutoCloseDef:
    """Receipt-to-close offset and the job's cron schedule."""

    working_hours: float = 56
    schedule: str = "5 2 * * *"


@dataclass(frozen=True)
class NotificationDef:
    queue_size: int = 1000
    worker_timeout_seconds: float = 0.5


@dataclass(frozen=True)
class EvidenceDef:
    require_receipt_evidence: bool = False


@dataclass(frozen=True)
class DatabaseDef:
    url: str = "sqlite:///replenishment.db"
    echo: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """Everything the lifecycle engine reads from configuration."""

    business_window: BusinessWindowDef = field(default_factory=BusinessWindowDef)
    auto_close: AutoCloseDef = field(default_factory=AutoCloseDef)
    notifications: NotificationDef = field(default_factory=NotificationDef)
    evidence: EvidenceDef = field(default_factory=EvidenceDef)
    database: DatabaseDef = field(default_factory=DatabaseDef)
    source: str | None = None
    checksum: str = ""
