"""
OrderLifecycleService -- the order state machine, applied.

Responsibility:
    Creates orders and drives them from UNDER_REVIEW to CLOSED_ORDER:
    approval with per-item quantities, requester confirmation, the arranging
    and packaging sub-stages, dispatch with tracking, receipt with its
    auto-close deadline, and the system close.

Architecture position:
    Kernel > Services -- imperative shell.
    Reads the transition table from ``domain/lifecycle.py``, reconciles
    quantities with ``domain/reconciliation.py``, computes deadlines with
    ``domain/working_hours.py`` and persists through ``OrderStore``.

Invariants enforced:
    - Every transition is a conditional update on (status, version); two
      racing callers cannot both succeed.
    - Approval reconciles quantities inside the same conditional update as
      the status change.
    - IN_TRANSIT requires courier tracking and transit evidence.
    - auto_close_at is set on receipt only, ``working_hours`` working hours
      after received_at.
    - Only SYSTEM closes, and only once auto_close_at has passed.

Failure modes:
    - OrderNotFoundError, ItemNotFoundError.
    - InvalidStateError, AutoCloseNotDueError.
    - NotAuthorizedError (role, requester ownership, manager eligibility
      or ownership).
    - InvalidQuantityError, EvidenceRequiredError, TrackingRequiredError,
      InvalidPayloadError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from replenishment_kernel.domain.clock import Clock
from replenishment_kernel.domain.dtos import (
    ActorContext,
    OrderDTO,
    OrderLineRequest,
    QuantityApproval,
    TrackingDetails,
    TransitionResult,
)
from replenishment_kernel.domain.events import NotificationEventType
from replenishment_kernel.domain.lifecycle import (
    ARRANGING_EDITABLE_STATUSES,
    ARRANGING_STAGES,
    ORDER_WORKFLOW,
    ActorRole,
    OrderAction,
    OrderStatus,
    Workflow,
)
from replenishment_kernel.domain.reconciliation import (
    ReconciliationResult,
    reconcile_quantities,
    validate_quantity,
)
from replenishment_kernel.domain.working_hours import (
    DEFAULT_WINDOW,
    BusinessWindow,
    add_working_hours,
)
from replenishment_kernel.exceptions import (
    AutoCloseNotDueError,
    InvalidPayloadError,
    NotAuthorizedError,
    ReplenishmentError,
    TrackingRequiredError,
)
from replenishment_kernel.logging_config import LogContext, get_logger
from replenishment_kernel.models.order import OrderModel, TrackingModel
from replenishment_kernel.services.base import OrderWorkflowService
from replenishment_kernel.services.manager_branch_service import ManagerBranchResolver
from replenishment_kernel.services.notification_gateway import NotificationDispatcher

logger = get_logger("services.order_lifecycle")

DEFAULT_AUTO_CLOSE_HOURS = 56

# Targets ``update_status`` drives directly; the others carry their own payload.
GENERIC_TARGETS: tuple[OrderStatus, ...] = (
    *ARRANGING_STAGES,
    OrderStatus.UNDER_PACKAGING,
    OrderStatus.IN_TRANSIT,
)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_order_lines(lines: Sequence[OrderLineRequest]) -> tuple[OrderLineRequest, ...]:
    """Check a create payload and return it with skus stripped.

    Raises:
        InvalidPayloadError: empty payload, blank or duplicate sku, missing
            or negative unit price on an in-stock line.
        InvalidQuantityError: quantity not a positive integer.
    """
    if not lines:
        raise InvalidPayloadError("at least one order line is required", "lines")

    seen: set[str] = set()
    cleaned: list[OrderLineRequest] = []
    for line in lines:
        sku = line.sku.strip() if isinstance(line.sku, str) else ""
        if not sku:
            raise InvalidPayloadError("sku must be a non-empty string", "lines.sku")
        if sku in seen:
            raise InvalidPayloadError(f"sku {sku} appears more than once", "lines.sku")
        seen.add(sku)

        quantity = validate_quantity(sku, line.quantity, allow_zero=False)

        unit_price = line.unit_price
        if line.out_of_stock:
            unit_price = None
        else:
            if isinstance(unit_price, bool) or not isinstance(unit_price, (Decimal, int)):
                raise InvalidPayloadError(
                    f"unit price for {sku} must be a Decimal", "lines.unit_price"
                )
            unit_price = Decimal(unit_price)
            if unit_price < 0:
                raise InvalidPayloadError(
                    f"unit price for {sku} must be >= 0", "lines.unit_price"
                )

        cleaned.append(
            OrderLineRequest(
                sku=sku,
                quantity=quantity,
                unit_price=unit_price,
                name=_clean_text(line.name),
                out_of_stock=line.out_of_stock,
            )
        )
    return tuple(cleaned)


class OrderLifecycleService(OrderWorkflowService):
    """
    Order state machine over the persistent store.

    Contract:
        Every public method takes an ``ActorContext`` and either returns a
        frozen DTO / ``TransitionResult`` or raises a typed
        ``ReplenishmentError``.  The caller owns the transaction; the
        notification for a transition is released by the caller's commit.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT run the auto-close batch (AutoCloseScheduler does).
    """

    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher,
        resolver: ManagerBranchResolver,
        clock: Clock | None = None,
        window: BusinessWindow = DEFAULT_WINDOW,
        auto_close_hours: float = DEFAULT_AUTO_CLOSE_HOURS,
        require_receipt_evidence: bool = False,
        workflow: Workflow = ORDER_WORKFLOW,
    ):
        super().__init__(
            session,
            dispatcher,
            resolver,
            clock=clock,
            workflow=workflow,
            require_receipt_evidence=require_receipt_evidence,
        )
        self._window = window
        self._auto_close_hours = auto_close_hours

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_order(
        self,
        actor: ActorContext,
        branch_id: UUID,
        lines: Sequence[OrderLineRequest],
        remarks: str | None = None,
    ) -> OrderDTO:
        """Validate and persist a new order in UNDER_REVIEW.

        Emits ORDER_CREATED to every active manager of ``branch_id``.
        """
        with LogContext.bind(actor_id=str(actor.actor_id), actor_role=actor.role.value):
            try:
                if actor.role != ActorRole.REQUESTER:
                    raise NotAuthorizedError(
                        str(actor.actor_id), actor.role.value, "CREATE",
                        "requires REQUESTER",
                    )
                cleaned = validate_order_lines(lines)
            except ReplenishmentError as exc:
                self._rejected("CREATE", exc)
                raise

            model = self._store.create_order(
                requester_id=actor.actor_id,
                branch_id=branch_id,
                lines=cleaned,
                remarks=_clean_text(remarks),
            )
            dto = model.to_dto()
            self._dispatcher.enqueue(
                self.session,
                NotificationEventType.ORDER_CREATED,
                dto,
                actor,
                recipients=self._resolver.eligible_managers(branch_id),
            )
            logger.info(
                "order_created",
                extra={
                    "order_id": str(dto.id),
                    "order_number": dto.order_number,
                    "branch_id": str(branch_id),
                    "line_count": len(dto.items),
                    "total_items": dto.total_items,
                    "total_value": dto.total_value,
                },
            )
            return dto

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    def approve(
        self,
        order_id: UUID,
        actor: ActorContext,
        approvals: Sequence[QuantityApproval] = (),
    ) -> TransitionResult:
        """Manager sets approved quantities; UNDER_REVIEW -> CONFIRM_PENDING.

        Items not named in ``approvals`` are approved at their requested
        quantity and do not appear in ``quantity_changes``.
        """

        def prepare(order: OrderModel) -> ReconciliationResult:
            return reconcile_quantities(
                str(order.id),
                [item.to_dto() for item in order.items],
                approvals,
                default_to_requested=True,
            )

        def apply(model: OrderModel, _: ReconciliationResult):
            result = prepare(model)
            _write_reconciliation(model, result)
            return result.changes

        return self._transition(
            order_id, actor, action=OrderAction.APPROVE, prepare=prepare, apply=apply
        )

    def confirm(self, order_id: UUID, actor: ActorContext) -> TransitionResult:
        """Requester accepts the approved quantities."""
        return self._transition(order_id, actor, action=OrderAction.CONFIRM)

    # -------------------------------------------------------------------------
    # Fulfillment
    # -------------------------------------------------------------------------

    def update_arranging_stage(
        self,
        order_id: UUID,
        actor: ActorContext,
        stage: OrderStatus,
        evidence: Iterable[str] = (),
    ) -> TransitionResult:
        """Move forward through ARRANGING -> ARRANGED -> SENT_FOR_PACKAGING."""
        stage = OrderStatus(stage)
        if stage not in ARRANGING_STAGES:
            exc = InvalidPayloadError(f"{stage.value} is not an arranging stage", "stage")
            self._rejected(f"move to {stage.value}", exc)
            raise exc
        return self._transition(order_id, actor, target=stage, evidence=evidence)

    def update_status(
        self,
        order_id: UUID,
        actor: ActorContext,
        new_status: OrderStatus,
        evidence: Iterable[str] = (),
        tracking: TrackingDetails | None = None,
        expected_delivery_at: datetime | None = None,
    ) -> TransitionResult:
        """Target-driven transition for the fulfillment stages.

        IN_TRANSIT needs ``tracking`` and at least one transit evidence
        token.  ``expected_delivery_at`` may not lie in the past.  A
        CLOSED_ORDER target is handed to ``close_order``.
        """
        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.CLOSED_ORDER:
            return self.close_order(order_id, actor)
        if new_status not in GENERIC_TARGETS:
            exc = InvalidPayloadError(
                f"{new_status.value} is reached through its own operation", "new_status"
            )
            self._rejected(f"move to {new_status.value}", exc)
            raise exc

        dispatching = new_status == OrderStatus.IN_TRANSIT

        def prepare(order: OrderModel) -> TrackingDetails | None:
            if not dispatching:
                if tracking is not None or expected_delivery_at is not None:
                    raise InvalidPayloadError(
                        "tracking details are only accepted on dispatch", "tracking"
                    )
                return None
            courier_id = _clean_text(tracking.courier_id) if tracking else None
            if courier_id is None:
                raise TrackingRequiredError(str(order.id))
            if expected_delivery_at is not None:
                if expected_delivery_at.tzinfo is None:
                    raise InvalidPayloadError(
                        "expected_delivery_at must be timezone-aware",
                        "expected_delivery_at",
                    )
                if expected_delivery_at < self._clock.now():
                    raise InvalidPayloadError(
                        "expected_delivery_at is in the past", "expected_delivery_at"
                    )
            return TrackingDetails(
                courier_id=courier_id, courier_link=_clean_text(tracking.courier_link)
            )

        def apply(model: OrderModel, details: TrackingDetails | None) -> None:
            if details is None:
                return
            now = self._clock.now()
            if model.tracking is None:
                model.tracking = TrackingModel(
                    courier_id=details.courier_id,
                    courier_link=details.courier_link,
                    recorded_at=now,
                )
            else:
                model.tracking.courier_id = details.courier_id
                model.tracking.courier_link = details.courier_link
                model.tracking.recorded_at = now
            model.expected_delivery_at = expected_delivery_at

        extra = None
        if dispatching and tracking is not None:
            extra = {"courier_id": tracking.courier_id, "courier_link": tracking.courier_link}
        return self._transition(
            order_id,
            actor,
            target=new_status,
            evidence=evidence,
            prepare=prepare,
            apply=apply,
            extra=extra,
        )

    def update_arranging_remarks(
        self, order_id: UUID, actor: ActorContext, remarks: str | None
    ) -> OrderDTO:
        """Owning manager's notes while arranging. No status change, no event."""
        action = "UPDATE_ARRANGING_REMARKS"
        with LogContext.bind(order_id=str(order_id), actor_id=str(actor.actor_id)):
            try:
                if actor.role != ActorRole.MANAGER:
                    raise NotAuthorizedError(
                        str(actor.actor_id), actor.role.value, action, "requires MANAGER"
                    )
                order = self._store.get_order(order_id)
                self._check_manager(order, actor, action)

                def mutate(model: OrderModel) -> None:
                    model.arranging_remarks = _clean_text(remarks)
                    model.updated_by_id = actor.actor_id
                    if model.manager_id is None:
                        model.manager_id = actor.actor_id

                model = self._store.atomic_update(
                    order_id, ARRANGING_EDITABLE_STATUSES, mutate, action
                )
            except ReplenishmentError as exc:
                self._rejected(action, exc)
                raise
            logger.info("arranging_remarks_updated", extra={"version": model.version})
            return model.to_dto()

    # -------------------------------------------------------------------------
    # Receipt and close
    # -------------------------------------------------------------------------

    def confirm_received(
        self,
        order_id: UUID,
        actor: ActorContext,
        evidence: Iterable[str] = (),
    ) -> TransitionResult:
        """Requester confirms delivery; starts the auto-close clock."""

        def apply(model: OrderModel, _: None) -> None:
            model.auto_close_at = add_working_hours(
                model.received_at, self._auto_close_hours, self._window
            )

        result = self._transition(
            order_id,
            actor,
            action=OrderAction.CONFIRM_RECEIVED,
            evidence=evidence,
            apply=apply,
        )
        logger.info(
            "auto_close_scheduled",
            extra={
                "order_id": str(order_id),
                "received_at": result.order.received_at,
                "auto_close_at": result.order.auto_close_at,
                "working_hours": self._auto_close_hours,
            },
        )
        return result

    def close_order(self, order_id: UUID, actor: ActorContext) -> TransitionResult:
        """SYSTEM close once auto_close_at has passed.

        Raises:
            AutoCloseNotDueError: deadline still in the future.
        """

        def prepare(order: OrderModel) -> None:
            now = self._clock.now()
            if order.auto_close_at is None or order.auto_close_at > now:
                raise AutoCloseNotDueError(
                    str(order.id),
                    order.auto_close_at.isoformat() if order.auto_close_at else None,
                    now.isoformat(),
                )

        return self._transition(
            order_id, actor, action=OrderAction.CLOSE, prepare=prepare
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> OrderDTO:
        return self._store.get_order(order_id).to_dto()


def _write_reconciliation(model: OrderModel, result: ReconciliationResult) -> None:
    """Copy reconciled snapshots and totals back onto the claimed rows."""
    by_sku = {item.sku: item for item in result.items}
    for item in model.items:
        item.apply(by_sku[item.sku])
    model.total_items = result.total_items
    model.total_value = result.total_value
