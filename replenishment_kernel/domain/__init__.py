"""
Pure domain layer.

Order lifecycle table, quantity reconciliation, working-hours arithmetic,
cron evaluation and DTOs, with NO dependencies on:
- ORM sessions
- Database
- Wall-clock time (callers pass "now" in)
- I/O
"""

from replenishment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from replenishment_kernel.domain.dtos import (
    ActorContext,
    IssueDTO,
    IssueInput,
    IssueReply,
    ManagerBranchAssignmentDTO,
    OrderDTO,
    OrderItemDTO,
    OrderLineRequest,
    OrderPage,
    QuantityApproval,
    ReceivedIssueDTO,
    ReceivedIssueInput,
    ReceivedIssueMessageDTO,
    TrackingDetails,
    TrackingDTO,
    TransitionResult,
)
from replenishment_kernel.domain.events import NotificationEvent, NotificationEventType
from replenishment_kernel.domain.lifecycle import (
    ORDER_WORKFLOW,
    ActorRole,
    EvidenceStage,
    OrderAction,
    OrderStatus,
    Transition,
    Workflow,
)
from replenishment_kernel.domain.reconciliation import (
    QuantityChange,
    ReconciliationResult,
    reconcile_quantities,
)
from replenishment_kernel.domain.working_hours import (
    BusinessWindow,
    add_working_hours,
    working_hours_between,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ActorContext",
    "ActorRole",
    "BusinessWindow",
    "EvidenceStage",
    "IssueDTO",
    "IssueInput",
    "IssueReply",
    "ManagerBranchAssignmentDTO",
    "NotificationEvent",
    "NotificationEventType",
    "ORDER_WORKFLOW",
    "OrderAction",
    "OrderDTO",
    "OrderItemDTO",
    "OrderLineRequest",
    "OrderPage",
    "OrderStatus",
    "QuantityApproval",
    "QuantityChange",
    "ReceivedIssueDTO",
    "ReceivedIssueInput",
    "ReceivedIssueMessageDTO",
    "ReconciliationResult",
    "TrackingDTO",
    "TrackingDetails",
    "Transition",
    "TransitionResult",
    "Workflow",
    "add_working_hours",
    "reconcile_quantities",
    "working_hours_between",
]
