"""
Module: replenishment_kernel.selectors.order_selector
Responsibility: Paginated read access to orders for the three audiences:
    the requesting branch, the branch as a whole, and a manager across the
    branches they are actively assigned to.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Newest orders first; ``order_number`` breaks ties so pages are stable.
    - Only active manager assignments widen a manager's view.

Failure modes:
    - OrderNotFoundError from ``get_order``.
    - InvalidPayloadError for page < 1 or limit outside 1..MAX_PAGE_SIZE.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union
from uuid import UUID

from sqlalchemy import Select, func, select

from replenishment_kernel.domain.dtos import OrderDTO, OrderPage
from replenishment_kernel.domain.lifecycle import OrderStatus
from replenishment_kernel.exceptions import InvalidPayloadError, OrderNotFoundError
from replenishment_kernel.models.assignment import ManagerBranchAssignmentModel
from replenishment_kernel.models.order import OrderModel
from replenishment_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

StatusFilter = Optional[Union[OrderStatus, Iterable[OrderStatus]]]


def _status_values(status: StatusFilter) -> tuple[str, ...] | None:
    if status is None:
        return None
    if isinstance(status, OrderStatus):
        return (status.value,)
    return tuple(OrderStatus(s).value for s in status)


class OrderSelector(BaseSelector):
    """Read-only order queries returning ``OrderDTO`` / ``OrderPage``."""

    def get_order(self, order_id: UUID) -> OrderDTO:
        order = self.session.get(OrderModel, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order.to_dto()

    def get_by_number(self, order_number: str) -> OrderDTO | None:
        order = self.session.execute(
            select(OrderModel).where(OrderModel.order_number == order_number)
        ).scalar_one_or_none()
        return order.to_dto() if order is not None else None

    def list_for_requester(
        self,
        requester_id: UUID,
        status: StatusFilter = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        stmt = select(OrderModel).where(OrderModel.requester_id == requester_id)
        return self._page(stmt, status, page, limit)

    def list_for_branch(
        self,
        branch_id: UUID,
        status: StatusFilter = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        stmt = select(OrderModel).where(OrderModel.branch_id == branch_id)
        return self._page(stmt, status, page, limit)

    def list_for_manager(
        self,
        manager_id: UUID,
        status: StatusFilter = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> OrderPage:
        """Orders of every branch where ``manager_id`` is actively assigned."""
        branches = (
            select(ManagerBranchAssignmentModel.branch_id)
            .where(
                ManagerBranchAssignmentModel.manager_id == manager_id,
                ManagerBranchAssignmentModel.is_active.is_(True),
            )
            .scalar_subquery()
        )
        stmt = select(OrderModel).where(OrderModel.branch_id.in_(branches))
        return self._page(stmt, status, page, limit)

    def count_by_status(self, branch_id: UUID | None = None) -> dict[OrderStatus, int]:
        """Order counts per status (zero-filled), optionally for one branch."""
        stmt = select(OrderModel.status, func.count()).group_by(OrderModel.status)
        if branch_id is not None:
            stmt = stmt.where(OrderModel.branch_id == branch_id)
        counts = {status: 0 for status in OrderStatus}
        for value, count in self.session.execute(stmt):
            counts[OrderStatus(value)] = count
        return counts

    def _page(
        self, stmt: Select, status: StatusFilter, page: int, limit: int
    ) -> OrderPage:
        if page < 1:
            raise InvalidPayloadError("page must be >= 1", "page")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidPayloadError(f"limit must be between 1 and {MAX_PAGE_SIZE}", "limit")

        values = _status_values(status)
        if values is not None:
            stmt = stmt.where(OrderModel.status.in_(values))

        total = self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()
        rows = self.session.execute(
            stmt.order_by(OrderModel.created_at.desc(), OrderModel.order_number.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return OrderPage(
            items=tuple(row.to_dto() for row in rows),
            total=total,
            page=page,
            limit=limit,
        )
