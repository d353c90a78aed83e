"""
Data transfer objects for the replenishment kernel.

Frozen dataclasses crossing the service boundary: request payloads coming
in (order lines, quantity approvals, issue inputs, tracking) and snapshots
going out (orders, items, issues, transition results).  ORM models convert
to these via ``to_dto()``; nothing outside ``models/`` and ``services/``
ever holds an ORM object.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from replenishment_kernel.domain.lifecycle import ActorRole, OrderStatus

if TYPE_CHECKING:
    from replenishment_kernel.domain.reconciliation import QuantityChange


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, in which role."""

    actor_id: UUID
    role: ActorRole

    @classmethod
    def system(cls, actor_id: UUID) -> ActorContext:
        return cls(actor_id=actor_id, role=ActorRole.SYSTEM)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderLineRequest:
    """One requested catalog line, snapshotted at order time.

    ``unit_price`` is ignored (stored as None) for out-of-stock lines.
    """

    sku: str
    quantity: int
    unit_price: Decimal | None
    name: str | None = None
    out_of_stock: bool = False


@dataclass(frozen=True)
class QuantityApproval:
    sku: str
    qty_approved: int


@dataclass(frozen=True)
class IssueInput:
    """A branch concern; ``sku`` None means the whole order."""

    reason: str
    sku: str | None = None


@dataclass(frozen=True)
class IssueReply:
    """A manager answer; a quantity re-runs reconciliation for that sku."""

    reply: str
    sku: str | None = None
    qty_approved: int | None = None


@dataclass(frozen=True)
class ReceivedIssueInput:
    """Post-delivery problem with one item, with its grouped evidence."""

    sku: str
    reason: str
    evidence: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrackingDetails:
    courier_id: str
    courier_link: str | None = None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderItemDTO:
    sku: str
    name: str | None
    qty_requested: int
    qty_approved: int | None
    unit_price: Decimal | None
    total_price: Decimal | None
    out_of_stock: bool = False

    @property
    def effective_quantity(self) -> int:
        return self.qty_requested if self.qty_approved is None else self.qty_approved


@dataclass(frozen=True)
class TrackingDTO:
    courier_id: str
    courier_link: str | None
    recorded_at: datetime


@dataclass(frozen=True)
class EvidenceSnapshot:
    arranging: tuple[str, ...] = ()
    packaging: tuple[str, ...] = ()
    transit: tuple[str, ...] = ()
    receipt: tuple[str, ...] = ()


@dataclass(frozen=True)
class OrderDTO:
    id: UUID
    order_number: str
    status: OrderStatus
    requester_id: UUID
    branch_id: UUID
    manager_id: UUID | None
    items: tuple[OrderItemDTO, ...]
    total_items: int
    total_value: Decimal
    remarks: str | None
    manager_reply: str | None
    arranging_remarks: str | None
    created_at: datetime
    approved_at: datetime | None = None
    confirmed_at: datetime | None = None
    arranging_started_at: datetime | None = None
    arranging_completed_at: datetime | None = None
    sent_for_packaging_at: datetime | None = None
    packaging_started_at: datetime | None = None
    dispatched_at: datetime | None = None
    expected_delivery_at: datetime | None = None
    received_at: datetime | None = None
    auto_close_at: datetime | None = None
    closed_at: datetime | None = None
    evidence: EvidenceSnapshot = field(default_factory=EvidenceSnapshot)
    tracking: TrackingDTO | None = None
    version: int = 0

    def item(self, sku: str) -> OrderItemDTO:
        for item in self.items:
            if item.sku == sku:
                return item
        raise KeyError(sku)


@dataclass(frozen=True)
class IssueDTO:
    id: UUID
    order_id: UUID
    sku: str | None
    reason: str | None
    raised_by_id: UUID | None
    raised_at: datetime | None
    reply: str | None = None
    replied_by_id: UUID | None = None
    replied_at: datetime | None = None
    qty_approved: int | None = None

    @property
    def is_open(self) -> bool:
        return self.reason is not None and self.reply is None


@dataclass(frozen=True)
class ReceivedIssueMessageDTO:
    id: UUID
    author_id: UUID
    author_role: ActorRole
    body: str
    evidence: tuple[str, ...]
    created_at: datetime


@dataclass(frozen=True)
class ReceivedIssueDTO:
    id: UUID
    order_id: UUID
    sku: str
    reason: str
    evidence: tuple[str, ...]
    reported_by_id: UUID
    reported_at: datetime
    messages: tuple[ReceivedIssueMessageDTO, ...] = ()


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful transition."""

    order: OrderDTO
    from_status: OrderStatus
    to_status: OrderStatus
    quantity_changes: dict[str, QuantityChange] = field(default_factory=dict)


@dataclass(frozen=True)
class OrderPage:
    items: tuple[OrderDTO, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class ManagerBranchAssignmentDTO:
    id: UUID
    manager_id: UUID
    branch_id: UUID
    is_active: bool
    assigned_at: datetime
    deactivated_at: datetime | None = None
