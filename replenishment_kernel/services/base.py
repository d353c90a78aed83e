"""
Service bases for the replenishment kernel.

Responsibility:
    ``BaseService`` gives every service the flush-only session contract.
    ``OrderWorkflowService`` adds the machinery every order transition
    shares: table lookup, ownership guards, evidence checks, the conditional
    update, the commit-bound notification and the transition log line.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    OrderLifecycleService and IssueService extend ``OrderWorkflowService``;
    SequenceService-style helpers extend ``BaseService`` directly.

Invariants enforced:
    - Services flush within the caller's transaction and never commit or
      roll back.
    - A transition is resolved status-first, role-second, then ownership,
      then evidence; all checks run before the row is claimed.
    - Exactly one notification is queued per successful transition, and it
      only reaches the gateway when the caller commits.
    - The first MANAGER transition on an order records that manager as the
      owner; later manager transitions must come from the owner.

Failure modes:
    - InvalidStateError / NotAuthorizedError from table resolution.
    - NotAuthorizedError from ownership guards.
    - EvidenceRequiredError / InvalidPayloadError from evidence checks.
    - Every rejection is logged as ``order_transition_rejected`` at WARNING
      and re-raised unchanged.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, Callable, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from replenishment_kernel.domain.clock import Clock, SystemClock
from replenishment_kernel.domain.dtos import ActorContext, TransitionResult
from replenishment_kernel.domain.events import dedupe_recipients
from replenishment_kernel.domain.lifecycle import (
    MANAGER_OWNS_ORDER,
    ORDER_WORKFLOW,
    REQUESTER_OWNS_ORDER,
    ActorRole,
    EvidenceStage,
    OrderAction,
    OrderStatus,
    Transition,
    Workflow,
    resolve_transition,
    resolve_transition_to,
)
from replenishment_kernel.exceptions import (
    EvidenceRequiredError,
    InvalidPayloadError,
    NotAuthorizedError,
    ReplenishmentError,
)
from replenishment_kernel.logging_config import LogContext, get_logger
from replenishment_kernel.models.order import OrderModel
from replenishment_kernel.services.manager_branch_service import ManagerBranchResolver
from replenishment_kernel.services.notification_gateway import NotificationDispatcher
from replenishment_kernel.services.order_store import OrderStore

logger = get_logger("services.workflow")

# Milestone column stamped by each action.
ACTION_TIMESTAMPS: dict[OrderAction, str] = {
    OrderAction.APPROVE: "approved_at",
    OrderAction.CONFIRM: "confirmed_at",
    OrderAction.START_ARRANGING: "arranging_started_at",
    OrderAction.MARK_ARRANGED: "arranging_completed_at",
    OrderAction.SEND_FOR_PACKAGING: "sent_for_packaging_at",
    OrderAction.START_PACKAGING: "packaging_started_at",
    OrderAction.DISPATCH: "dispatched_at",
    OrderAction.CONFIRM_RECEIVED: "received_at",
    OrderAction.CLOSE: "closed_at",
}

_FULFILLMENT_ROLES = frozenset(
    {ActorRole.MANAGER, ActorRole.PACKAGER, ActorRole.DISPATCHER}
)

Prepare = Callable[[OrderModel], Any]
Apply = Callable[[OrderModel, Any], Any]


class BaseService(ABC):
    """
    Abstract base for kernel services.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self.session = session


def normalize_evidence(evidence: Iterable[str] | None) -> tuple[str, ...]:
    """Strip tokens and reject blanks. Tokens are opaque otherwise."""
    if evidence is None:
        return ()
    if isinstance(evidence, str):
        evidence = (evidence,)
    tokens: list[str] = []
    for token in evidence:
        if not isinstance(token, str) or not token.strip():
            raise InvalidPayloadError("evidence tokens must be non-empty strings", "evidence")
        tokens.append(token.strip())
    return tuple(tokens)


class OrderWorkflowService(BaseService):
    """Shared transition driver for services that move orders."""

    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher,
        resolver: ManagerBranchResolver,
        clock: Clock | None = None,
        workflow: Workflow = ORDER_WORKFLOW,
        require_receipt_evidence: bool = False,
    ):
        super().__init__(session)
        self._dispatcher = dispatcher
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._workflow = workflow
        self._require_receipt_evidence = require_receipt_evidence
        self._store = OrderStore(session, self._clock)

    @property
    def store(self) -> OrderStore:
        return self._store

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------

    def _check_requester(self, order: OrderModel, actor: ActorContext, action: str) -> None:
        if actor.actor_id != order.requester_id:
            raise NotAuthorizedError(
                str(actor.actor_id), actor.role.value, action,
                "actor is not the order's requester",
            )

    def _check_manager(self, order: OrderModel, actor: ActorContext, action: str) -> None:
        if actor.actor_id not in self._resolver.eligible_managers(order.branch_id):
            raise NotAuthorizedError(
                str(actor.actor_id), actor.role.value, action,
                f"not an active manager of branch {order.branch_id}",
            )
        if order.manager_id is not None and order.manager_id != actor.actor_id:
            raise NotAuthorizedError(
                str(actor.actor_id), actor.role.value, action,
                "order is owned by another manager",
            )

    def _check_guards(
        self, order: OrderModel, actor: ActorContext, transition: Transition
    ) -> None:
        action = transition.action.value
        if actor.role == ActorRole.REQUESTER and REQUESTER_OWNS_ORDER in transition.guards:
            self._check_requester(order, actor, action)
        if actor.role == ActorRole.MANAGER and MANAGER_OWNS_ORDER in transition.guards:
            self._check_manager(order, actor, action)

    def _check_evidence(
        self, order: OrderModel, transition: Transition, evidence: Iterable[str] | None
    ) -> tuple[str, ...]:
        tokens = normalize_evidence(evidence)
        if tokens and transition.evidence_stage is None:
            raise InvalidPayloadError(
                f"{transition.action.value} does not accept evidence", "evidence"
            )
        required = transition.evidence_required or (
            transition.evidence_stage == EvidenceStage.RECEIPT
            and self._require_receipt_evidence
        )
        if required and not tokens:
            raise EvidenceRequiredError(
                str(order.id),
                transition.to_state.value,
                transition.evidence_stage.value,
            )
        return tokens

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    def _manager_side(self, order: OrderModel) -> tuple[UUID, ...]:
        if order.manager_id is not None:
            return (order.manager_id,)
        return tuple(self._resolver.eligible_managers(order.branch_id))

    def _recipients(self, order: OrderModel, actor: ActorContext) -> tuple[UUID, ...]:
        """Counterpart of ``actor`` on this order."""
        if actor.role == ActorRole.REQUESTER:
            return dedupe_recipients(self._manager_side(order))
        if actor.role in _FULFILLMENT_ROLES:
            return dedupe_recipients(order.requester_id)
        return dedupe_recipients(order.requester_id, self._manager_side(order))

    # -------------------------------------------------------------------------
    # Transition driver
    # -------------------------------------------------------------------------

    def _transition(
        self,
        order_id: UUID,
        actor: ActorContext,
        *,
        action: OrderAction | None = None,
        target: OrderStatus | None = None,
        evidence: Iterable[str] | None = None,
        prepare: Prepare | None = None,
        apply: Apply | None = None,
        extra: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Run one table transition end to end.

        Exactly one of ``action`` / ``target`` selects the row.  ``prepare``
        validates the payload against the pre-claim snapshot and returns
        whatever ``apply`` needs; ``apply`` writes the payload onto the
        claimed row and may return quantity changes.
        """
        requested = action.value if action is not None else f"move to {target.value}"
        with LogContext.bind(
            order_id=str(order_id),
            actor_id=str(actor.actor_id),
            actor_role=actor.role.value,
        ):
            try:
                order = self._store.get_order(order_id)
                from_status = order.status_enum
                if action is not None:
                    transition = resolve_transition(
                        str(order_id), from_status, action, actor.role,
                        str(actor.actor_id), self._workflow,
                    )
                else:
                    transition = resolve_transition_to(
                        str(order_id), from_status, target, actor.role,
                        str(actor.actor_id), self._workflow,
                    )
                self._check_guards(order, actor, transition)
                tokens = self._check_evidence(order, transition, evidence)
                prepared = prepare(order) if prepare is not None else None

                outcome: dict[str, Any] = {}

                def mutate(model: OrderModel) -> None:
                    now = self._clock.now()
                    model.status = transition.to_state.value
                    model.updated_by_id = actor.actor_id
                    column = ACTION_TIMESTAMPS.get(transition.action)
                    if column is not None:
                        setattr(model, column, now)
                    if actor.role == ActorRole.MANAGER and model.manager_id is None:
                        model.manager_id = actor.actor_id
                    if tokens:
                        model.append_evidence(transition.evidence_stage, tokens)
                    if apply is not None:
                        outcome["changes"] = apply(model, prepared)

                model = self._store.atomic_update(
                    order_id,
                    transition.from_state,
                    mutate,
                    transition.action.value,
                    match_version=not transition.status_only_claim,
                )
            except ReplenishmentError as exc:
                self._rejected(requested, exc)
                raise

            dto = model.to_dto()
            changes = dict(outcome.get("changes") or {})
            event_extra = dict(extra or {})
            # Reconciling transitions return a change map, possibly empty.
            if outcome.get("changes") is not None:
                event_extra["quantity_changes"] = {
                    sku: change.as_dict() for sku, change in changes.items()
                }
            self._dispatcher.enqueue(
                self.session,
                transition.event_type,
                dto,
                actor,
                recipients=self._recipients(model, actor),
                extra=event_extra,
            )
            logger.info(
                "order_transition",
                extra={
                    "order_number": dto.order_number,
                    "action": transition.action.value,
                    "from_status": from_status.value,
                    "to_status": dto.status.value,
                    "version": dto.version,
                    "evidence_count": len(tokens),
                },
            )
            return TransitionResult(
                order=dto,
                from_status=from_status,
                to_status=dto.status,
                quantity_changes=changes,
            )

    def _rejected(self, action: str, exc: ReplenishmentError) -> None:
        logger.warning(
            "order_transition_rejected",
            extra={"action": action, "error_code": exc.code, "reason": exc.message},
        )
