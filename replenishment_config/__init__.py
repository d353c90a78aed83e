"""
replenishment_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.  Returns a frozen ``WorkflowConfig``.

Architecture position:
    Configuration -- YAML-driven, validated at load time.  Sits above
    ``replenishment_kernel``; the kernel MUST NEVER import from this
    package.  ``bridges`` translates config sections into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - The packaged ``defaults.yaml`` is always the base; an explicit file only
      overrides the keys it names.

Failure modes:
    - ``FileNotFoundError`` -- the requested override file does not exist.
    - ``ValueError`` -- unknown sections or keys, or malformed values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``workflow_config_loaded`` log entry with the source path and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from replenishment_config.bridges import business_window, lifecycle_options, schedule_timezone
from replenishment_config.loader import load_yaml_file, merge_sections, parse_workflow_config
from replenishment_config.schema import (
    AutoCloseDef,
    BusinessWindowDef,
    DatabaseDef,
    EvidenceDef,
    NotificationDef,
    WorkflowConfig,
)

_logger = logging.getLogger("replenishment_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Optional YAML file whose sections override the packaged
            defaults.

    Returns:
        WorkflowConfig with every section populated.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ValueError: validation failure.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if config_path is not None:
        path = Path(config_path)
        data = merge_sections(data, load_yaml_file(path))
        source = str(path)

    config = parse_workflow_config(data, source=source)

    _logger.info(
        "workflow_config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "auto_close_hours": config.auto_close.working_hours,
            "auto_close_schedule": config.auto_close.schedule,
            "timezone": config.business_window.timezone,
        },
    )
    return config


__all__ = [
    "AutoCloseDef",
    "BusinessWindowDef",
    "DatabaseDef",
    "EvidenceDef",
    "NotificationDef",
    "WorkflowConfig",
    "business_window",
    "get_active_config",
    "lifecycle_options",
    "schedule_timezone",
]
