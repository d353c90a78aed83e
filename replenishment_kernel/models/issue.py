"""
Module: replenishment_kernel.models.issue
Responsibility: ORM persistence for the two issue channels.

    - OrderIssueModel: pre-fulfillment concerns raised by the branch and the
      manager's replies (one row per reason; replies fill in the same row).
    - ReceivedIssueModel / ReceivedIssueMessageModel: post-delivery, per-item
      reports with grouped evidence and a follow-up message thread.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Issue rows are append-only apart from the reply columns.
    - Post-delivery issues reference an item by snapshot sku.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from replenishment_kernel.db.base import Base, EvidenceList, UUIDString
from replenishment_kernel.domain.dtos import (
    IssueDTO,
    ReceivedIssueDTO,
    ReceivedIssueMessageDTO,
)
from replenishment_kernel.domain.lifecycle import ActorRole


class OrderIssueModel(Base):
    """Pre-fulfillment issue; ``reason`` is None for a reply-only row."""

    __tablename__ = "order_issues"

    __table_args__ = (
        Index("ix_order_issues_order_raised", "order_id", "raised_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    raised_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    raised_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reply: Mapped[str | None] = mapped_column(Text, nullable=True)
    replied_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    replied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    qty_approved: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Insertion order; timestamps can tie under a frozen test clock.
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<OrderIssue {self.id} sku={self.sku} open={self.reply is None}>"

    def to_dto(self) -> IssueDTO:
        return IssueDTO(
            id=self.id,
            order_id=self.order_id,
            sku=self.sku,
            reason=self.reason,
            raised_by_id=self.raised_by_id,
            raised_at=self.raised_at,
            reply=self.reply,
            replied_by_id=self.replied_by_id,
            replied_at=self.replied_at,
            qty_approved=self.qty_approved,
        )


class ReceivedIssueModel(Base):
    """Post-delivery problem report for one item."""

    __tablename__ = "order_received_issues"

    __table_args__ = (
        Index("ix_received_issues_order", "order_id", "reported_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("orders.id"), nullable=False
    )
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str]] = mapped_column(EvidenceList(), nullable=False, default=list)
    reported_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reported_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    messages: Mapped[list[ReceivedIssueMessageModel]] = relationship(
        "ReceivedIssueMessageModel",
        back_populates="issue",
        order_by="ReceivedIssueMessageModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dto(self) -> ReceivedIssueDTO:
        return ReceivedIssueDTO(
            id=self.id,
            order_id=self.order_id,
            sku=self.sku,
            reason=self.reason,
            evidence=tuple(self.evidence or ()),
            reported_by_id=self.reported_by_id,
            reported_at=self.reported_at,
            messages=tuple(m.to_dto() for m in self.messages),
        )


class ReceivedIssueMessageModel(Base):
    """One message in a post-delivery issue thread."""

    __tablename__ = "received_issue_messages"

    issue_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("order_received_issues.id"), nullable=False, index=True
    )
    author_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    author_role: Mapped[str] = mapped_column(String(30), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[list[str]] = mapped_column(EvidenceList(), nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    issue: Mapped[ReceivedIssueModel] = relationship(
        "ReceivedIssueModel", back_populates="messages"
    )

    def to_dto(self) -> ReceivedIssueMessageDTO:
        return ReceivedIssueMessageDTO(
            id=self.id,
            author_id=self.author_id,
            author_role=ActorRole(self.author_role),
            body=self.body,
            evidence=tuple(self.evidence or ()),
            created_at=self.created_at,
        )
