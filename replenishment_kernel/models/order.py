"""
Module: replenishment_kernel.models.order
Responsibility: ORM persistence for the order aggregate: Order, its item
    lines and its courier tracking record.

Architecture position: Kernel > Models.  May import from db/ and domain/
    (DTO conversion only).

Invariants enforced:
    - status is one of the lifecycle statuses (DB check constraint).
    - order_number is unique.
    - (order_id, sku) is unique: one line per catalog snapshot reference.
    - qty_requested > 0 and qty_approved >= 0 (DB check constraints).
    - version only grows; OrderStore bumps it in the conditional UPDATE that
      claims the row for a transition.

Failure modes:
    - IntegrityError on duplicate order_number or duplicate sku per order.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from replenishment_kernel.db.base import Base, EvidenceList, TrackedBase, UUIDString
from replenishment_kernel.domain.dtos import (
    EvidenceSnapshot,
    OrderDTO,
    OrderItemDTO,
    TrackingDTO,
)
from replenishment_kernel.domain.lifecycle import EvidenceStage, OrderStatus

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in OrderStatus)


class OrderModel(TrackedBase):
    """Persistent order aggregate root.

    ``created_by_id`` is the requester.  Evidence columns hold opaque
    attachment tokens appended per sub-stage.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_orders_valid_status",
        ),
        CheckConstraint("version >= 0", name="ck_orders_version_nonnegative"),
        Index("ix_orders_status_auto_close", "status", "auto_close_at"),
        Index("ix_orders_branch_status", "branch_id", "status"),
        Index("ix_orders_requester", "requester_id", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=OrderStatus.UNDER_REVIEW.value
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    manager_reply: Mapped[str | None] = mapped_column(Text, nullable=True)
    arranging_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    arranging_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    arranging_completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_for_packaging_at: Mapped[datetime | None] = mapped_column(nullable=True)
    packaging_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dispatched_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expected_delivery_at: Mapped[datetime | None] = mapped_column(nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    auto_close_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    arranging_evidence: Mapped[list[str]] = mapped_column(
        EvidenceList(), nullable=False, default=list
    )
    packaging_evidence: Mapped[list[str]] = mapped_column(
        EvidenceList(), nullable=False, default=list
    )
    transit_evidence: Mapped[list[str]] = mapped_column(
        EvidenceList(), nullable=False, default=list
    )
    receipt_evidence: Mapped[list[str]] = mapped_column(
        EvidenceList(), nullable=False, default=list
    )

    items: Mapped[list[OrderItemModel]] = relationship(
        "OrderItemModel",
        back_populates="order",
        order_by="OrderItemModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    tracking: Mapped[TrackingModel | None] = relationship(
        "TrackingModel",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} v{self.version}>"

    @property
    def status_enum(self) -> OrderStatus:
        return OrderStatus(self.status)

    def item_by_sku(self, sku: str) -> OrderItemModel | None:
        for item in self.items:
            if item.sku == sku:
                return item
        return None

    def append_evidence(self, stage: EvidenceStage, tokens: tuple[str, ...]) -> None:
        """Append tokens to a stage's collection (new list so the ORM sees it)."""
        column = f"{stage.value}_evidence"
        setattr(self, column, [*getattr(self, column), *tokens])

    def to_dto(self) -> OrderDTO:
        """Convert ORM model to frozen domain DTO."""
        return OrderDTO(
            id=self.id,
            order_number=self.order_number,
            status=OrderStatus(self.status),
            requester_id=self.requester_id,
            branch_id=self.branch_id,
            manager_id=self.manager_id,
            items=tuple(item.to_dto() for item in self.items),
            total_items=self.total_items,
            total_value=self.total_value,
            remarks=self.remarks,
            manager_reply=self.manager_reply,
            arranging_remarks=self.arranging_remarks,
            created_at=self.created_at,
            approved_at=self.approved_at,
            confirmed_at=self.confirmed_at,
            arranging_started_at=self.arranging_started_at,
            arranging_completed_at=self.arranging_completed_at,
            sent_for_packaging_at=self.sent_for_packaging_at,
            packaging_started_at=self.packaging_started_at,
            dispatched_at=self.dispatched_at,
            expected_delivery_at=self.expected_delivery_at,
            received_at=self.received_at,
            auto_close_at=self.auto_close_at,
            closed_at=self.closed_at,
            evidence=EvidenceSnapshot(
                arranging=tuple(self.arranging_evidence or ()),
                packaging=tuple(self.packaging_evidence or ()),
                transit=tuple(self.transit_evidence or ()),
                receipt=tuple(self.receipt_evidence or ()),
            ),
            tracking=self.tracking.to_dto() if self.tracking is not None else None,
            version=self.version,
        )


class OrderItemModel(Base):
    """One order line, keyed by a catalog snapshot sku (no catalog FK)."""

    __tablename__ = "order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "sku", name="uq_order_items_order_sku"),
        CheckConstraint("qty_requested > 0", name="ck_order_items_requested_positive"),
        CheckConstraint(
            "qty_approved IS NULL OR qty_approved >= 0",
            name="ck_order_items_approved_nonnegative",
        ),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    qty_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_approved: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    out_of_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[OrderModel] = relationship("OrderModel", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.sku} req={self.qty_requested} appr={self.qty_approved}>"

    def to_dto(self) -> OrderItemDTO:
        return OrderItemDTO(
            sku=self.sku,
            name=self.name,
            qty_requested=self.qty_requested,
            qty_approved=self.qty_approved,
            unit_price=self.unit_price,
            total_price=self.total_price,
            out_of_stock=self.out_of_stock,
        )

    def apply(self, dto: OrderItemDTO) -> None:
        """Write reconciled quantities back; requested qty and price are immutable."""
        self.qty_approved = dto.qty_approved
        self.total_price = dto.total_price


class TrackingModel(Base):
    """Courier tracking; exists only once the order is dispatched."""

    __tablename__ = "order_tracking"

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False, unique=True
    )
    courier_id: Mapped[str] = mapped_column(String(255), nullable=False)
    courier_link: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    order: Mapped[OrderModel] = relationship("OrderModel", back_populates="tracking")

    def to_dto(self) -> TrackingDTO:
        return TrackingDTO(
            courier_id=self.courier_id,
            courier_link=self.courier_link,
            recorded_at=self.recorded_at,
        )
