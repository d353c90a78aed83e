"""
OrderStore -- persistence for the order aggregate with conditional updates.

Responsibility:
    Creates orders, loads them, and applies every lifecycle mutation through
    ``atomic_update``: a compare-and-swap on (status, version) followed by
    the caller's mutation in the same transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Used by OrderLifecycleService,
    IssueService and AutoCloseScheduler.  Never commits.

Invariants enforced:
    - A transition only proceeds if the row still has the status *and*
      version the caller read.  The claim is one statement:

          UPDATE orders SET version = version + 1
           WHERE id = :id AND status = :seen_status AND version = :seen_version

      Zero rows updated means another transaction moved the order first;
      the caller gets InvalidStateError with the status now stored.
    - Callers passing ``match_version=False`` (the auto-close) drop the
      version term: post-delivery writes bump the version while the order
      stays CONFIRM_ORDER_RECEIVED, and must not hold off the close.
    - The claim holds the row (PostgreSQL row lock / SQLite write lock)
      until the caller's transaction ends, so the mutation that follows
      cannot interleave with a competing transition.

Failure modes:
    - OrderNotFoundError for unknown ids.
    - InvalidStateError when the status is not one the caller expects, or
      when the claim loses a race.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from replenishment_kernel.domain.clock import Clock, SystemClock
from replenishment_kernel.domain.dtos import OrderLineRequest
from replenishment_kernel.domain.lifecycle import ORDER_WORKFLOW, OrderStatus
from replenishment_kernel.domain.reconciliation import compute_totals, line_total
from replenishment_kernel.exceptions import InvalidStateError, OrderNotFoundError
from replenishment_kernel.logging_config import get_logger
from replenishment_kernel.models.order import OrderItemModel, OrderModel
from replenishment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.order_store")

ORDER_NUMBER_PREFIX = "OR"


def format_order_number(value: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}{value:06d}"


class OrderStore:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequences: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = sequences or SequenceService(session)

    @property
    def session(self) -> Session:
        return self._session

    def create_order(
        self,
        requester_id: UUID,
        branch_id: UUID,
        lines: Sequence[OrderLineRequest],
        remarks: str | None = None,
    ) -> OrderModel:
        """Persist a new UNDER_REVIEW order. Lines must already be validated."""
        now = self._clock.now()
        number = format_order_number(
            self._sequences.next_value(SequenceService.ORDER_NUMBER)
        )

        order = OrderModel(
            order_number=number,
            status=ORDER_WORKFLOW.initial_state.value,
            version=0,
            requester_id=requester_id,
            branch_id=branch_id,
            remarks=remarks,
            created_at=now,
            updated_at=now,
            created_by_id=requester_id,
            arranging_evidence=[],
            packaging_evidence=[],
            transit_evidence=[],
            receipt_evidence=[],
        )
        for position, line in enumerate(lines):
            unit_price = None if line.out_of_stock else line.unit_price
            order.items.append(
                OrderItemModel(
                    position=position,
                    sku=line.sku,
                    name=line.name,
                    qty_requested=line.quantity,
                    qty_approved=None,
                    unit_price=unit_price,
                    total_price=line_total(line.quantity, unit_price),
                    out_of_stock=line.out_of_stock,
                )
            )
        order.total_items, order.total_value = compute_totals(
            item.to_dto() for item in order.items
        )

        self._session.add(order)
        self._session.flush()
        logger.debug(
            "order_persisted",
            extra={"order_id": str(order.id), "order_number": number},
        )
        return order

    def get_order(self, order_id: UUID) -> OrderModel:
        """Load an order with fresh column values.

        Raises:
            OrderNotFoundError: unknown id.
        """
        order = self._session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def atomic_update(
        self,
        order_id: UUID,
        expected_status: OrderStatus | Iterable[OrderStatus],
        mutation: Callable[[OrderModel], None],
        action: str = "update",
        *,
        match_version: bool = True,
    ) -> OrderModel:
        """Claim the order, then apply ``mutation`` in the same transaction.

        Args:
            order_id: Target order.
            expected_status: Status (or statuses) the caller's precondition
                requires.
            mutation: Applies the new status and any item / evidence changes
                to the loaded model.  May raise; the caller's rollback then
                undoes the claim.
            action: Name used in errors and logs.
            match_version: When False the claim only requires the status;
                the version stored at claim time is read back.

        Returns:
            The mutated, flushed OrderModel.
        """
        expected = (
            (expected_status,)
            if isinstance(expected_status, OrderStatus)
            else tuple(expected_status)
        )
        order = self.get_order(order_id)
        seen_status = order.status
        seen_version = order.version

        if OrderStatus(seen_status) not in expected:
            raise InvalidStateError(
                str(order_id), seen_status, action, tuple(s.value for s in expected)
            )

        conditions = [OrderModel.id == order_id, OrderModel.status == seen_status]
        if match_version:
            conditions.append(OrderModel.version == seen_version)
        claimed_at = self._clock.now()
        claimed = self._session.execute(
            update(OrderModel)
            .where(*conditions)
            .values(version=OrderModel.version + 1, updated_at=claimed_at)
            .execution_options(synchronize_session=False)
        ).rowcount

        if claimed != 1:
            current = self._session.execute(
                select(OrderModel.status).where(OrderModel.id == order_id)
            ).scalar_one_or_none()
            logger.warning(
                "order_claim_conflict",
                extra={
                    "order_id": str(order_id),
                    "action": action,
                    "seen_status": seen_status,
                    "seen_version": seen_version,
                    "current_status": current,
                },
            )
            raise InvalidStateError(
                str(order_id), current, action, tuple(s.value for s in expected)
            )

        if match_version:
            claimed_version = seen_version + 1
        else:
            claimed_version = self._session.execute(
                select(OrderModel.version).where(OrderModel.id == order_id)
            ).scalar_one()
        set_committed_value(order, "version", claimed_version)
        set_committed_value(order, "updated_at", claimed_at)
        mutation(order)
        self._session.flush()
        return order

    def find_due_for_auto_close(self, now: datetime, limit: int | None = None) -> list[UUID]:
        """Ids of received orders whose deadline is at or before ``now``."""
        stmt = (
            select(OrderModel.id)
            .where(
                OrderModel.status == OrderStatus.CONFIRM_ORDER_RECEIVED.value,
                OrderModel.auto_close_at.is_not(None),
                OrderModel.auto_close_at <= now,
            )
            .order_by(OrderModel.auto_close_at, OrderModel.order_number)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.execute(stmt).scalars())
