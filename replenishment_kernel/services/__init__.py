"""Services for the replenishment kernel (write side)."""

from replenishment_kernel.services.auto_close_scheduler import (
    AutoCloseItem,
    AutoCloseRunResult,
    AutoCloseScheduler,
)
from replenishment_kernel.services.issue_service import IssueService
from replenishment_kernel.services.manager_branch_service import (
    ManagerBranchResolver,
    ManagerBranchService,
)
from replenishment_kernel.services.notification_gateway import (
    InMemoryNotificationSink,
    NotificationDispatcher,
    NotificationGateway,
    QueuedNotificationGateway,
    logging_sink,
)
from replenishment_kernel.services.order_lifecycle_service import OrderLifecycleService
from replenishment_kernel.services.order_store import OrderStore
from replenishment_kernel.services.sequence_service import SequenceService

__all__ = [
    "AutoCloseItem",
    "AutoCloseRunResult",
    "AutoCloseScheduler",
    "InMemoryNotificationSink",
    "IssueService",
    "ManagerBranchResolver",
    "ManagerBranchService",
    "NotificationDispatcher",
    "NotificationGateway",
    "OrderLifecycleService",
    "OrderStore",
    "QueuedNotificationGateway",
    "SequenceService",
    "logging_sink",
]
