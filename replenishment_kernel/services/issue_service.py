"""
IssueService -- the two issue channels around an order.

Responsibility:
    Pre-fulfillment: the requester raises concerns about the approved
    quantities (RAISED_ISSUE) and the owning manager replies, optionally
    re-approving quantities, which returns the order to CONFIRM_PENDING.

    Post-delivery: once receipt is confirmed the requester reports per-item
    problems with evidence, and both sides continue in a message thread.
    These reports never change the status or the auto-close deadline.

Architecture position:
    Kernel > Services -- imperative shell.  Shares the transition driver
    with OrderLifecycleService through ``OrderWorkflowService``.

Invariants enforced:
    - One OrderIssueModel row per raised reason; replies fill the newest
      open row for the same sku.
    - Reply quantities are reconciled in the same conditional update as
      the RAISED_ISSUE -> CONFIRM_PENDING transition.
    - Post-delivery writes are conditional updates guarded on
      CONFIRM_ORDER_RECEIVED, so they cannot slip in after a close.
"""

from __future__ import annotations

from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select

from replenishment_kernel.domain.dtos import (
    ActorContext,
    IssueDTO,
    IssueInput,
    IssueReply,
    QuantityApproval,
    ReceivedIssueDTO,
    ReceivedIssueInput,
    ReceivedIssueMessageDTO,
    TransitionResult,
)
from replenishment_kernel.domain.events import NotificationEventType
from replenishment_kernel.domain.lifecycle import ActorRole, OrderAction, OrderStatus
from replenishment_kernel.domain.reconciliation import (
    ReconciliationResult,
    reconcile_quantities,
)
from replenishment_kernel.exceptions import (
    InvalidPayloadError,
    IssueNotFoundError,
    ItemNotFoundError,
    NotAuthorizedError,
    ReplenishmentError,
)
from replenishment_kernel.logging_config import LogContext, get_logger
from replenishment_kernel.models.issue import (
    OrderIssueModel,
    ReceivedIssueMessageModel,
    ReceivedIssueModel,
)
from replenishment_kernel.models.order import OrderModel
from replenishment_kernel.services.base import OrderWorkflowService, normalize_evidence

logger = get_logger("services.issues")

POST_DELIVERY = "post_delivery"


def combine_entries(entries: Sequence[tuple[str | None, str]]) -> str:
    """Render ``(sku, text)`` pairs into one remarks string.

    A single entry is stored as-is; several become ``"#1: a | #2 [SKU]: b"``.
    """
    if len(entries) == 1:
        return entries[0][1]
    parts = []
    for index, (sku, text) in enumerate(entries, start=1):
        label = f"#{index} [{sku}]" if sku else f"#{index}"
        parts.append(f"{label}: {text}")
    return " | ".join(parts)


def _require_sku(order: OrderModel, sku: str | None) -> None:
    if sku is not None and order.item_by_sku(sku) is None:
        raise ItemNotFoundError(str(order.id), sku)


class IssueService(OrderWorkflowService):
    """Raise / reply on approvals; report / discuss problems after delivery."""

    # -------------------------------------------------------------------------
    # Pre-fulfillment channel
    # -------------------------------------------------------------------------

    def raise_issue(
        self,
        order_id: UUID,
        actor: ActorContext,
        issues: str | Sequence[IssueInput],
    ) -> TransitionResult:
        """Requester disputes the approval; -> RAISED_ISSUE.

        ``issues`` is a single reason or a list of (optionally item-scoped)
        reasons.  Blank reasons are dropped; nothing left is an error.
        """
        if isinstance(issues, str):
            issues = (IssueInput(reason=issues),)
        cleaned = [
            IssueInput(reason=i.reason.strip(), sku=i.sku.strip() if i.sku else None)
            for i in issues
            if isinstance(i.reason, str) and i.reason.strip()
        ]

        def prepare(order: OrderModel) -> list[IssueInput]:
            if not cleaned:
                raise InvalidPayloadError("at least one non-empty reason is required", "issues")
            for issue in cleaned:
                _require_sku(order, issue.sku)
            return cleaned

        def apply(model: OrderModel, entries: list[IssueInput]) -> None:
            now = self._clock.now()
            model.remarks = combine_entries([(i.sku, i.reason) for i in entries])
            sequence = self._next_issue_sequence(model.id)
            for offset, issue in enumerate(entries):
                self.session.add(
                    OrderIssueModel(
                        order_id=model.id,
                        sku=issue.sku,
                        reason=issue.reason,
                        raised_by_id=actor.actor_id,
                        raised_at=now,
                        sequence=sequence + offset,
                    )
                )

        return self._transition(
            order_id,
            actor,
            action=OrderAction.RAISE_ISSUE,
            prepare=prepare,
            apply=apply,
            extra={"issue_count": len(cleaned)},
        )

    def reply_to_issue(
        self,
        order_id: UUID,
        actor: ActorContext,
        replies: str | Sequence[IssueReply],
    ) -> TransitionResult:
        """Owning manager answers; RAISED_ISSUE -> CONFIRM_PENDING.

        Replies carrying ``qty_approved`` re-run reconciliation for their
        sku; the resulting deltas are in ``quantity_changes``.
        """
        if isinstance(replies, str):
            replies = (IssueReply(reply=replies),)
        cleaned = [
            IssueReply(
                reply=r.reply.strip() if isinstance(r.reply, str) else "",
                sku=r.sku.strip() if r.sku else None,
                qty_approved=r.qty_approved,
            )
            for r in replies
            if (isinstance(r.reply, str) and r.reply.strip()) or r.qty_approved is not None
        ]

        def approvals_of(entries: list[IssueReply]) -> list[QuantityApproval]:
            return [
                QuantityApproval(sku=r.sku, qty_approved=r.qty_approved)
                for r in entries
                if r.qty_approved is not None
            ]

        def prepare(order: OrderModel) -> ReconciliationResult:
            if not cleaned:
                raise InvalidPayloadError("at least one reply is required", "replies")
            for reply in cleaned:
                if reply.qty_approved is not None and reply.sku is None:
                    raise InvalidPayloadError("a quantity reply must name a sku", "replies.sku")
                _require_sku(order, reply.sku)
            return reconcile_quantities(
                str(order.id),
                [item.to_dto() for item in order.items],
                approvals_of(cleaned),
            )

        def apply(model: OrderModel, _: ReconciliationResult):
            now = self._clock.now()
            result = reconcile_quantities(
                str(model.id),
                [item.to_dto() for item in model.items],
                approvals_of(cleaned),
            )
            by_sku = {item.sku: item for item in result.items}
            for item in model.items:
                item.apply(by_sku[item.sku])
            model.total_items = result.total_items
            model.total_value = result.total_value

            texts = [(r.sku, r.reply) for r in cleaned if r.reply]
            if texts:
                model.manager_reply = combine_entries(texts)

            sequence = self._next_issue_sequence(model.id)
            for reply in cleaned:
                row = self._newest_open_issue(model.id, reply.sku)
                if row is None:
                    row = OrderIssueModel(order_id=model.id, sku=reply.sku, sequence=sequence)
                    sequence += 1
                    self.session.add(row)
                row.reply = reply.reply or None
                row.replied_by_id = actor.actor_id
                row.replied_at = now
                row.qty_approved = reply.qty_approved
            return result.changes

        return self._transition(
            order_id,
            actor,
            action=OrderAction.MANAGER_REPLY,
            prepare=prepare,
            apply=apply,
        )

    def get_issues(self, order_id: UUID) -> tuple[IssueDTO, ...]:
        """Pre-fulfillment issues for the order, oldest first."""
        self._store.get_order(order_id)
        rows = self.session.execute(
            select(OrderIssueModel)
            .where(OrderIssueModel.order_id == order_id)
            .order_by(OrderIssueModel.sequence)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    # -------------------------------------------------------------------------
    # Post-delivery channel
    # -------------------------------------------------------------------------

    def report_received_issues(
        self,
        order_id: UUID,
        actor: ActorContext,
        issues: Sequence[ReceivedIssueInput],
    ) -> tuple[ReceivedIssueDTO, ...]:
        """Requester reports delivered-item problems. Status is untouched."""
        action = "REPORT_RECEIVED_ISSUES"
        with LogContext.bind(order_id=str(order_id), actor_id=str(actor.actor_id)):
            try:
                if actor.role != ActorRole.REQUESTER:
                    raise NotAuthorizedError(
                        str(actor.actor_id), actor.role.value, action, "requires REQUESTER"
                    )
                order = self._store.get_order(order_id)
                self._check_requester(order, actor, action)
                cleaned = self._clean_received(order, issues)

                created: list[ReceivedIssueModel] = []

                def mutate(model: OrderModel) -> None:
                    now = self._clock.now()
                    sequence = self._next_received_sequence(model.id)
                    for offset, (sku, reason, evidence) in enumerate(cleaned):
                        row = ReceivedIssueModel(
                            order_id=model.id,
                            sku=sku,
                            reason=reason,
                            evidence=list(evidence),
                            reported_by_id=actor.actor_id,
                            reported_at=now,
                            sequence=sequence + offset,
                        )
                        self.session.add(row)
                        created.append(row)

                model = self._store.atomic_update(
                    order_id, OrderStatus.CONFIRM_ORDER_RECEIVED, mutate, action
                )
            except ReplenishmentError as exc:
                self._rejected(action, exc)
                raise

            dto = model.to_dto()
            self._dispatcher.enqueue(
                self.session,
                NotificationEventType.ORDER_ISSUE_RAISED,
                dto,
                actor,
                recipients=self._recipients(model, actor),
                extra={"channel": POST_DELIVERY, "skus": [sku for sku, _, _ in cleaned]},
            )
            logger.info(
                "received_issues_reported",
                extra={"order_number": dto.order_number, "issue_count": len(created)},
            )
            return tuple(row.to_dto() for row in created)

    def add_received_issue_message(
        self,
        issue_id: UUID,
        actor: ActorContext,
        body: str,
        evidence: Iterable[str] = (),
    ) -> ReceivedIssueMessageDTO:
        """Append to a post-delivery thread and notify the other side."""
        action = "ADD_RECEIVED_ISSUE_MESSAGE"
        with LogContext.bind(actor_id=str(actor.actor_id), actor_role=actor.role.value):
            try:
                issue = self.session.get(ReceivedIssueModel, issue_id)
                if issue is None:
                    raise IssueNotFoundError(str(issue_id))
                order = self._store.get_order(issue.order_id)
                if actor.role == ActorRole.REQUESTER:
                    self._check_requester(order, actor, action)
                elif actor.role == ActorRole.MANAGER:
                    self._check_manager(order, actor, action)
                else:
                    raise NotAuthorizedError(
                        str(actor.actor_id), actor.role.value, action,
                        "requires REQUESTER or MANAGER",
                    )
                text = body.strip() if isinstance(body, str) else ""
                if not text:
                    raise InvalidPayloadError("message body must not be empty", "body")
                tokens = normalize_evidence(evidence)

                holder: list[ReceivedIssueMessageModel] = []

                def mutate(model: OrderModel) -> None:
                    message = ReceivedIssueMessageModel(
                        author_id=actor.actor_id,
                        author_role=actor.role.value,
                        body=text,
                        evidence=list(tokens),
                        created_at=self._clock.now(),
                        sequence=len(issue.messages),
                    )
                    issue.messages.append(message)
                    holder.append(message)

                model = self._store.atomic_update(
                    order.id, OrderStatus.CONFIRM_ORDER_RECEIVED, mutate, action
                )
            except ReplenishmentError as exc:
                self._rejected(action, exc)
                raise

            event_type = (
                NotificationEventType.ORDER_MANAGER_REPLY
                if actor.role == ActorRole.MANAGER
                else NotificationEventType.ORDER_ISSUE_RAISED
            )
            self._dispatcher.enqueue(
                self.session,
                event_type,
                model.to_dto(),
                actor,
                recipients=self._recipients(model, actor),
                extra={"channel": POST_DELIVERY, "issue_id": str(issue.id), "sku": issue.sku},
            )
            logger.info(
                "received_issue_message_added",
                extra={"issue_id": str(issue.id), "evidence_count": len(tokens)},
            )
            return holder[0].to_dto()

    def get_received_issues(self, order_id: UUID) -> tuple[ReceivedIssueDTO, ...]:
        self._store.get_order(order_id)
        rows = self.session.execute(
            select(ReceivedIssueModel)
            .where(ReceivedIssueModel.order_id == order_id)
            .order_by(ReceivedIssueModel.sequence)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _clean_received(
        self, order: OrderModel, issues: Sequence[ReceivedIssueInput]
    ) -> list[tuple[str, str, tuple[str, ...]]]:
        if not issues:
            raise InvalidPayloadError("at least one item issue is required", "issues")
        cleaned = []
        for issue in issues:
            sku = issue.sku.strip() if isinstance(issue.sku, str) else ""
            if not sku:
                raise InvalidPayloadError("sku must be a non-empty string", "issues.sku")
            _require_sku(order, sku)
            reason = issue.reason.strip() if isinstance(issue.reason, str) else ""
            if not reason:
                raise InvalidPayloadError(f"reason for {sku} must not be empty", "issues.reason")
            cleaned.append((sku, reason, normalize_evidence(issue.evidence)))
        return cleaned

    def _next_issue_sequence(self, order_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(OrderIssueModel.sequence)).where(
                OrderIssueModel.order_id == order_id
            )
        ).scalar_one()
        return 0 if current is None else current + 1

    def _next_received_sequence(self, order_id: UUID) -> int:
        current = self.session.execute(
            select(func.max(ReceivedIssueModel.sequence)).where(
                ReceivedIssueModel.order_id == order_id
            )
        ).scalar_one()
        return 0 if current is None else current + 1

    def _newest_open_issue(
        self, order_id: UUID, sku: str | None
    ) -> OrderIssueModel | None:
        stmt = select(OrderIssueModel).where(
            OrderIssueModel.order_id == order_id,
            OrderIssueModel.reason.is_not(None),
            OrderIssueModel.reply.is_(None),
        )
        if sku is None:
            stmt = stmt.where(OrderIssueModel.sku.is_(None))
        else:
            stmt = stmt.where(OrderIssueModel.sku == sku)
        return self.session.execute(
            stmt.order_by(OrderIssueModel.sequence.desc()).limit(1)
        ).scalar_one_or_none()
