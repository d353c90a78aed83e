"""
Quantity reconciliation (``replenishment_kernel.domain.reconciliation``).

Responsibility
--------------
Given an order's current item snapshots and the quantities a manager sets,
compute per-item deltas, recompute line totals, and recompute the order's
derived ``total_items`` / ``total_value``.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.  The lifecycle and issue
services call it inside the same conditional update as the transition that
triggers it (approval, or a manager reply carrying quantities) and write the
returned snapshots back onto the ORM rows.

Invariants enforced
-------------------
* ``qty_approved >= 0`` and integral; no upper bound relative to the
  requested quantity.
* ``is_increased`` and ``is_decreased`` are mutually exclusive and follow
  the sign of ``change``.
* ``total_price = effective_quantity x unit_price`` for priced lines;
  unpriced (out-of-stock) lines carry no total and never count toward
  ``total_value``.

Failure modes
-------------
* ``ItemNotFoundError`` -- sku not on the order.
* ``InvalidQuantityError`` -- negative, non-integer, or repeated sku.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from replenishment_kernel.domain.dtos import OrderItemDTO, QuantityApproval
from replenishment_kernel.exceptions import InvalidQuantityError, ItemNotFoundError

# Matches the Numeric(38, 9) money columns
MONEY_DECIMAL_PLACES = 9


def round_money(value: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Quantize a money value to the storage precision."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class QuantityChange:
    requested: int
    approved: int
    change: int
    is_increased: bool
    is_decreased: bool

    def as_dict(self) -> dict[str, int | bool]:
        return {
            "requested": self.requested,
            "approved": self.approved,
            "change": self.change,
            "isIncreased": self.is_increased,
            "isDecreased": self.is_decreased,
        }


@dataclass(frozen=True)
class ReconciliationResult:
    items: tuple[OrderItemDTO, ...]
    changes: dict[str, QuantityChange]
    total_items: int
    total_value: Decimal


def validate_quantity(sku: str, quantity: object, *, allow_zero: bool = True) -> int:
    """Return ``quantity`` as an int or raise InvalidQuantityError."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(sku, quantity, "must be an integer")
    if quantity < 0:
        raise InvalidQuantityError(sku, quantity, "must be >= 0")
    if not allow_zero and quantity == 0:
        raise InvalidQuantityError(sku, quantity, "must be > 0")
    return quantity


def line_total(quantity: int, unit_price: Decimal | None) -> Decimal | None:
    if unit_price is None:
        return None
    return round_money(Decimal(quantity) * unit_price)


def compute_totals(items: Iterable[OrderItemDTO]) -> tuple[int, Decimal]:
    """Derived order totals: (total_items, total_value)."""
    total_items = 0
    total_value = Decimal("0")
    for item in items:
        total_items += item.effective_quantity
        if item.total_price is not None:
            total_value += item.total_price
    return total_items, round_money(total_value)


def reconcile_quantities(
    order_id: str,
    items: Sequence[OrderItemDTO],
    approvals: Sequence[QuantityApproval],
    *,
    default_to_requested: bool = False,
) -> ReconciliationResult:
    """Apply ``approvals`` to ``items``.

    Args:
        order_id: For error reporting only.
        items: Current item snapshots.
        approvals: ``(sku, qty_approved)`` pairs.
        default_to_requested: When True (initial approval), items not named
            in ``approvals`` and not yet approved are approved at their
            requested quantity.  They do not appear in ``changes``.

    Returns:
        ReconciliationResult with the recomputed snapshots (original order),
        per-sku changes for the supplied pairs, and the new totals.
    """
    by_sku = {item.sku: item for item in items}
    changes: dict[str, QuantityChange] = {}
    approved: dict[str, int] = {}

    for approval in approvals:
        if approval.sku in approved:
            raise InvalidQuantityError(
                approval.sku, approval.qty_approved, "sku appears more than once"
            )
        item = by_sku.get(approval.sku)
        if item is None:
            raise ItemNotFoundError(order_id, approval.sku)
        qty = validate_quantity(approval.sku, approval.qty_approved)
        approved[approval.sku] = qty

        change = qty - item.qty_requested
        changes[approval.sku] = QuantityChange(
            requested=item.qty_requested,
            approved=qty,
            change=change,
            is_increased=change > 0,
            is_decreased=change < 0,
        )

    updated: list[OrderItemDTO] = []
    for item in items:
        if item.sku in approved:
            qty = approved[item.sku]
        elif default_to_requested and item.qty_approved is None:
            qty = item.qty_requested
        else:
            updated.append(item)
            continue
        updated.append(
            replace(item, qty_approved=qty, total_price=line_total(qty, item.unit_price))
        )

    total_items, total_value = compute_totals(updated)
    return ReconciliationResult(
        items=tuple(updated),
        changes=changes,
        total_items=total_items,
        total_value=total_value,
    )
