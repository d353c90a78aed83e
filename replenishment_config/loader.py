"""
Configuration Loader (``replenishment_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen dataclasses of
``replenishment_config.schema``.  The single public entry point for
runtime config is ``replenishment_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Overrides are merged section by section over the packaged defaults;
  unknown sections or keys are rejected rather than ignored.
* ``compute_checksum`` gives a deterministic SHA-256 of the merged data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or a value of the wrong shape  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import time
from pathlib import Path
from typing import Any

import yaml

from replenishment_config.schema import (
    AutoCloseDef,
    BusinessWindowDef,
    DatabaseDef,
    EvidenceDef,
    NotificationDef,
    WorkflowConfig,
)

_SECTIONS: dict[str, type] = {
    "business_window": BusinessWindowDef,
    "auto_close": AutoCloseDef,
    "notifications": NotificationDef,
    "evidence": EvidenceDef,
    "database": DatabaseDef,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_sections(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge each section of ``override`` over ``base``."""
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        if name not in _SECTIONS:
            raise ValueError(f"Unknown configuration section: {name!r}")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Section {name!r} must be a mapping")
        merged.setdefault(name, {}).update(values)
    return merged


def parse_clock_time(value: Any) -> time:
    """Parse "HH:MM" (YAML may also hand us minutes-past-midnight ints)."""
    if isinstance(value, time):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        # YAML 1.1 reads an unquoted 09:00 as a sexagesimal int.
        return time(value // 60, value % 60)
    if isinstance(value, str):
        return time.fromisoformat(value.strip())
    raise ValueError(f"Cannot parse time of day from {value!r}")


def _check_keys(section: str, data: dict[str, Any]) -> None:
    allowed = set(_SECTIONS[section].__dataclass_fields__)
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown key(s) in {section}: {', '.join(sorted(unknown))}")


def parse_business_window(data: dict[str, Any]) -> BusinessWindowDef:
    _check_keys("business_window", data)
    defaults = BusinessWindowDef()
    start = parse_clock_time(data.get("start", defaults.start))
    end = parse_clock_time(data.get("end", defaults.end))
    if start >= end:
        raise ValueError(f"business_window.start {start} must precede end {end}")
    days = tuple(int(d) for d in data.get("working_days", defaults.working_days))
    if not days or any(d < 0 or d > 6 for d in days):
        raise ValueError(f"business_window.working_days must be weekdays 0-6, got {days}")
    return BusinessWindowDef(
        start=start.strftime("%H:%M"),
        end=end.strftime("%H:%M"),
        working_days=tuple(sorted(set(days))),
        timezone=str(data.get("timezone", defaults.timezone)),
    )


def parse_auto_close(data: dict[str, Any]) -> AutoCloseDef:
    _check_keys("auto_close", data)
    defaults = AutoCloseDef()
    hours = float(data.get("working_hours", defaults.working_hours))
    if hours < 0:
        raise ValueError(f"auto_close.working_hours must be >= 0, got {hours}")
    return AutoCloseDef(
        working_hours=hours,
        schedule=str(data.get("schedule", defaults.schedule)),
    )


def parse_notifications(data: dict[str, Any]) -> NotificationDef:
    _check_keys("notifications", data)
    defaults = NotificationDef()
    queue_size = int(data.get("queue_size", defaults.queue_size))
    if queue_size < 1:
        raise ValueError(f"notifications.queue_size must be >= 1, got {queue_size}")
    return NotificationDef(
        queue_size=queue_size,
        worker_timeout_seconds=float(
            data.get("worker_timeout_seconds", defaults.worker_timeout_seconds)
        ),
    )


def parse_evidence(data: dict[str, Any]) -> EvidenceDef:
    _check_keys("evidence", data)
    return EvidenceDef(
        require_receipt_evidence=bool(data.get("require_receipt_evidence", False)),
    )


def parse_database(data: dict[str, Any]) -> DatabaseDef:
    _check_keys("database", data)
    defaults = DatabaseDef()
    return DatabaseDef(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
    )


def parse_workflow_config(data: dict[str, Any], source: str | None = None) -> WorkflowConfig:
    """Build a ``WorkflowConfig`` from merged section data."""
    for name in data:
        if name not in _SECTIONS:
            raise ValueError(f"Unknown configuration section: {name!r}")
    return WorkflowConfig(
        business_window=parse_business_window(data.get("business_window") or {}),
        auto_close=parse_auto_close(data.get("auto_close") or {}),
        notifications=parse_notifications(data.get("notifications") or {}),
        evidence=parse_evidence(data.get("evidence") or {}),
        database=parse_database(data.get("database") or {}),
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
