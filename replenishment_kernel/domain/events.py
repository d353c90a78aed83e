"""
Notification event types (``replenishment_kernel.domain.events``).

Pure value objects describing what the lifecycle engine tells the outside
world.  The engine only decides *which* event fires and *who* should hear
about it; rendering and transport belong to the gateway's sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class NotificationEventType(str, Enum):
    """Event taxonomy emitted by the workflow engine."""

    ORDER_CREATED = "ORDER_CREATED"
    ORDER_CONFIRM_PENDING = "ORDER_CONFIRM_PENDING"
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_ISSUE_RAISED = "ORDER_ISSUE_RAISED"
    ORDER_MANAGER_REPLY = "ORDER_MANAGER_REPLY"
    ORDER_UNDER_PACKAGING = "ORDER_UNDER_PACKAGING"
    ORDER_ARRANGING = "ORDER_ARRANGING"
    ORDER_ARRANGED = "ORDER_ARRANGED"
    ORDER_SENT_FOR_PACKAGING = "ORDER_SENT_FOR_PACKAGING"
    ORDER_IN_TRANSIT = "ORDER_IN_TRANSIT"
    ORDER_RECEIVED = "ORDER_RECEIVED"
    ORDER_CLOSED = "ORDER_CLOSED"
    STOCK_LOW = "STOCK_LOW"
    SYSTEM_ALERT = "SYSTEM_ALERT"


@dataclass(frozen=True)
class NotificationEvent:
    """One event handed to the notification gateway.

    ``order_id`` / ``order_number`` / ``status`` are None for events that
    are not about a single order (SYSTEM_ALERT from the scheduler).
    ``recipients`` is de-duplicated and order-preserving.
    """

    event_id: UUID
    event_type: NotificationEventType
    occurred_at: datetime
    actor_id: UUID | None
    actor_role: str | None
    recipients: tuple[UUID, ...] = ()
    order_id: UUID | None = None
    order_number: str | None = None
    status: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def dedupe_recipients(*groups) -> tuple[UUID, ...]:
    """Flatten recipient id groups, dropping None and repeats, keeping order."""
    seen: dict[UUID, None] = {}
    for group in groups:
        if group is None:
            continue
        if isinstance(group, UUID):
            group = (group,)
        for recipient in group:
            if recipient is not None:
                seen.setdefault(recipient, None)
    return tuple(seen)
