"""
Order lifecycle state machine (``replenishment_kernel.domain.lifecycle``).

Responsibility
--------------
Declares the legal order statuses, actor roles and actions, and the single
transition table keyed by ``(current_status, action, role)``.  Any triple not
in the table is rejected.  Also declares which transitions need evidence
attachments and which notification event each one emits.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The lifecycle
service reads this table; nothing here touches the database.

Invariants enforced
-------------------
* ``CLOSED_ORDER`` is terminal: no transition leaves it.
* Every transition names at least one role; ``CLOSE`` is SYSTEM-only.
* Arranging sub-stages move forward only.
* Resolution order is status first, then role: an action that is illegal
  from the current status is ``InvalidStateError`` whoever asks; a legal
  action requested by the wrong role is ``NotAuthorizedError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from replenishment_kernel.domain.events import NotificationEventType
from replenishment_kernel.exceptions import InvalidStateError, NotAuthorizedError


class OrderStatus(str, Enum):
    UNDER_REVIEW = "UNDER_REVIEW"
    CONFIRM_PENDING = "CONFIRM_PENDING"
    APPROVED_ORDER = "APPROVED_ORDER"
    RAISED_ISSUE = "RAISED_ISSUE"
    ARRANGING = "ARRANGING"
    ARRANGED = "ARRANGED"
    SENT_FOR_PACKAGING = "SENT_FOR_PACKAGING"
    UNDER_PACKAGING = "UNDER_PACKAGING"
    IN_TRANSIT = "IN_TRANSIT"
    CONFIRM_ORDER_RECEIVED = "CONFIRM_ORDER_RECEIVED"
    CLOSED_ORDER = "CLOSED_ORDER"


class ActorRole(str, Enum):
    REQUESTER = "REQUESTER"
    MANAGER = "MANAGER"
    PACKAGER = "PACKAGER"
    DISPATCHER = "DISPATCHER"
    SYSTEM = "SYSTEM"


class OrderAction(str, Enum):
    APPROVE = "APPROVE"
    CONFIRM = "CONFIRM"
    RAISE_ISSUE = "RAISE_ISSUE"
    MANAGER_REPLY = "MANAGER_REPLY"
    START_ARRANGING = "START_ARRANGING"
    MARK_ARRANGED = "MARK_ARRANGED"
    SEND_FOR_PACKAGING = "SEND_FOR_PACKAGING"
    START_PACKAGING = "START_PACKAGING"
    DISPATCH = "DISPATCH"
    CONFIRM_RECEIVED = "CONFIRM_RECEIVED"
    CLOSE = "CLOSE"


class EvidenceStage(str, Enum):
    """Which evidence collection on the order receives a call's attachments."""

    ARRANGING = "arranging"
    PACKAGING = "packaging"
    TRANSIT = "transit"
    RECEIPT = "receipt"


@dataclass(frozen=True)
class Guard:
    """A named precondition checked by the service, beyond status and role.

    Descriptive only: the lifecycle service evaluates it.
    """

    name: str
    description: str


REQUESTER_OWNS_ORDER = Guard(
    "requester_owns_order", "Actor must be the order's requester"
)
MANAGER_OWNS_ORDER = Guard(
    "manager_owns_order",
    "Actor must be an active manager of the branch and, once the order is "
    "owned, its owning manager",
)
AUTO_CLOSE_DUE = Guard(
    "auto_close_due", "auto_close_at must be at or before now"
)
TRACKING_PRESENT = Guard(
    "tracking_present", "Courier tracking details must be supplied"
)


@dataclass(frozen=True)
class Transition:
    """One row of the lifecycle table.

    ``roles`` may perform ``action`` from ``from_state``.  When
    ``evidence_required`` is True the call must carry at least one token for
    ``evidence_stage``.  ``status_only_claim`` rows claim the order on
    status alone, so writes that bump ``version`` without moving the status
    do not hold them off.
    """

    from_state: OrderStatus
    to_state: OrderStatus
    action: OrderAction
    roles: frozenset[ActorRole]
    event_type: NotificationEventType
    evidence_stage: EvidenceStage | None = None
    evidence_required: bool = False
    guards: tuple[Guard, ...] = ()
    status_only_claim: bool = False


@dataclass(frozen=True)
class Workflow:
    """State machine definition for the order lifecycle."""

    name: str
    initial_state: OrderStatus
    transitions: tuple[Transition, ...]
    terminal_states: frozenset[OrderStatus] = frozenset()

    def transitions_from(self, state: OrderStatus) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.from_state == state)

    def allowed_actions(self, state: OrderStatus, role: ActorRole | None = None) -> frozenset[OrderAction]:
        return frozenset(
            t.action
            for t in self.transitions_from(state)
            if role is None or role in t.roles
        )

    def find(self, state: OrderStatus, action: OrderAction) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.action == action:
                return t
        return None

    def find_by_target(
        self, state: OrderStatus, target: OrderStatus
    ) -> Transition | None:
        for t in self.transitions:
            if t.from_state == state and t.to_state == target:
                return t
        return None

    def source_states(self, action: OrderAction) -> tuple[OrderStatus, ...]:
        return tuple(t.from_state for t in self.transitions if t.action == action)


_MANAGER = frozenset({ActorRole.MANAGER})
_REQUESTER = frozenset({ActorRole.REQUESTER})

ORDER_WORKFLOW = Workflow(
    name="replenishment_order",
    initial_state=OrderStatus.UNDER_REVIEW,
    terminal_states=frozenset({OrderStatus.CLOSED_ORDER}),
    transitions=(
        Transition(
            OrderStatus.UNDER_REVIEW, OrderStatus.CONFIRM_PENDING,
            OrderAction.APPROVE, _MANAGER,
            NotificationEventType.ORDER_CONFIRM_PENDING,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.CONFIRM_PENDING, OrderStatus.APPROVED_ORDER,
            OrderAction.CONFIRM, _REQUESTER,
            NotificationEventType.ORDER_CONFIRMED,
            guards=(REQUESTER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.CONFIRM_PENDING, OrderStatus.RAISED_ISSUE,
            OrderAction.RAISE_ISSUE, _REQUESTER,
            NotificationEventType.ORDER_ISSUE_RAISED,
            guards=(REQUESTER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.APPROVED_ORDER, OrderStatus.RAISED_ISSUE,
            OrderAction.RAISE_ISSUE, _REQUESTER,
            NotificationEventType.ORDER_ISSUE_RAISED,
            guards=(REQUESTER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.RAISED_ISSUE, OrderStatus.CONFIRM_PENDING,
            OrderAction.MANAGER_REPLY, _MANAGER,
            NotificationEventType.ORDER_MANAGER_REPLY,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.APPROVED_ORDER, OrderStatus.ARRANGING,
            OrderAction.START_ARRANGING, _MANAGER,
            NotificationEventType.ORDER_ARRANGING,
            evidence_stage=EvidenceStage.ARRANGING,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.ARRANGING, OrderStatus.ARRANGED,
            OrderAction.MARK_ARRANGED, _MANAGER,
            NotificationEventType.ORDER_ARRANGED,
            evidence_stage=EvidenceStage.ARRANGING,
            evidence_required=True,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.ARRANGED, OrderStatus.SENT_FOR_PACKAGING,
            OrderAction.SEND_FOR_PACKAGING, _MANAGER,
            NotificationEventType.ORDER_SENT_FOR_PACKAGING,
            evidence_stage=EvidenceStage.ARRANGING,
            evidence_required=True,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.SENT_FOR_PACKAGING, OrderStatus.UNDER_PACKAGING,
            OrderAction.START_PACKAGING,
            frozenset({ActorRole.MANAGER, ActorRole.PACKAGER}),
            NotificationEventType.ORDER_UNDER_PACKAGING,
            evidence_stage=EvidenceStage.PACKAGING,
            guards=(MANAGER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.UNDER_PACKAGING, OrderStatus.IN_TRANSIT,
            OrderAction.DISPATCH,
            frozenset({ActorRole.MANAGER, ActorRole.DISPATCHER}),
            NotificationEventType.ORDER_IN_TRANSIT,
            evidence_stage=EvidenceStage.TRANSIT,
            evidence_required=True,
            guards=(MANAGER_OWNS_ORDER, TRACKING_PRESENT),
        ),
        Transition(
            OrderStatus.IN_TRANSIT, OrderStatus.CONFIRM_ORDER_RECEIVED,
            OrderAction.CONFIRM_RECEIVED, _REQUESTER,
            NotificationEventType.ORDER_RECEIVED,
            evidence_stage=EvidenceStage.RECEIPT,
            guards=(REQUESTER_OWNS_ORDER,),
        ),
        Transition(
            OrderStatus.CONFIRM_ORDER_RECEIVED, OrderStatus.CLOSED_ORDER,
            OrderAction.CLOSE, frozenset({ActorRole.SYSTEM}),
            NotificationEventType.ORDER_CLOSED,
            guards=(AUTO_CLOSE_DUE,),
            status_only_claim=True,
        ),
    ),
)

ARRANGING_STAGES: tuple[OrderStatus, ...] = (
    OrderStatus.ARRANGING,
    OrderStatus.ARRANGED,
    OrderStatus.SENT_FOR_PACKAGING,
)

# Statuses in which the owning manager may still edit arranging remarks.
ARRANGING_EDITABLE_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.APPROVED_ORDER, *ARRANGING_STAGES}
)


def resolve_transition(
    order_id: str,
    status: OrderStatus,
    action: OrderAction,
    role: ActorRole,
    actor_id: str,
    workflow: Workflow = ORDER_WORKFLOW,
) -> Transition:
    """Look up ``(status, action, role)`` in the table.

    Raises:
        InvalidStateError: no transition for ``action`` leaves ``status``.
        NotAuthorizedError: the transition exists but ``role`` may not fire it.
    """
    transition = workflow.find(status, action)
    if transition is None:
        raise InvalidStateError(
            order_id,
            status.value,
            action.value,
            expected=tuple(s.value for s in workflow.source_states(action)),
        )
    if role not in transition.roles:
        raise NotAuthorizedError(
            actor_id,
            role.value,
            action.value,
            f"requires one of {', '.join(sorted(r.value for r in transition.roles))}",
        )
    return transition


def resolve_transition_to(
    order_id: str,
    status: OrderStatus,
    target: OrderStatus,
    role: ActorRole,
    actor_id: str,
    workflow: Workflow = ORDER_WORKFLOW,
) -> Transition:
    """Target-driven variant used by ``update_status``."""
    transition = workflow.find_by_target(status, target)
    if transition is None:
        raise InvalidStateError(
            order_id,
            status.value,
            f"move to {target.value}",
            expected=tuple(
                t.from_state.value for t in workflow.transitions if t.to_state == target
            ),
        )
    return resolve_transition(
        order_id, status, transition.action, role, actor_id, workflow
    )
