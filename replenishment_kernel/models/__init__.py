"""ORM models for the replenishment kernel."""

from replenishment_kernel.models.assignment import ManagerBranchAssignmentModel
from replenishment_kernel.models.issue import (
    OrderIssueModel,
    ReceivedIssueMessageModel,
    ReceivedIssueModel,
)
from replenishment_kernel.models.order import OrderItemModel, OrderModel, TrackingModel
from replenishment_kernel.models.sequence import SequenceCounter

__all__ = [
    "ManagerBranchAssignmentModel",
    "OrderIssueModel",
    "OrderItemModel",
    "OrderModel",
    "ReceivedIssueMessageModel",
    "ReceivedIssueModel",
    "SequenceCounter",
    "TrackingModel",
]
