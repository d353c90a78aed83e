"""
Tests for commit-bound, fire-and-forget notifications.

Covers:
- NotificationDispatcher: released on commit, discarded on rollback, held
  across SAVEPOINT release, nothing queued for rejected transitions
- QueuedNotificationGateway: sink failures logged and counted without
  reaching the workflow, full queue drops, flush / stop
- emit_now() outside a transaction
- dedupe_recipients()
"""

import threading
from decimal import Decimal
from uuid import uuid4

import pytest

from replenishment_kernel.domain.dtos import OrderLineRequest, QuantityApproval
from replenishment_kernel.domain.events import NotificationEventType, dedupe_recipients
from replenishment_kernel.domain.lifecycle import OrderStatus
from replenishment_kernel.exceptions import NotAuthorizedError
from replenishment_kernel.services.notification_gateway import (
    InMemoryNotificationSink,
    NotificationDispatcher,
    QueuedNotificationGateway,
    logging_sink,
    pending_notifications,
)
from replenishment_kernel.services.order_lifecycle_service import OrderLifecycleService


def _failing_sink(_event):
    raise ConnectionError("smtp down")


def _line():
    return OrderLineRequest("SKU-1", 5, Decimal("2"))


class TestCommitBoundDispatch:

    def test_held_until_commit(self, session, lifecycle, make_order, manager, notification_sink, notification_gateway):
        order = make_order()
        notification_gateway.flush()
        before = len(notification_sink.events)

        lifecycle.approve(order.id, manager)

        assert pending_notifications(session) == [NotificationEventType.ORDER_CONFIRM_PENDING]
        assert notification_gateway.flush()
        assert len(notification_sink.events) == before

        session.commit()

        assert pending_notifications(session) == []
        assert notification_sink.wait_for(before + 1)
        assert notification_sink.events[-1].event_type == NotificationEventType.ORDER_CONFIRM_PENDING

    def test_approval_carries_quantity_changes(
        self, session, lifecycle, make_order, manager, notification_sink, notification_gateway
    ):
        order = make_order()

        lifecycle.approve(order.id, manager, [QuantityApproval("SKU-1", 100)])
        session.commit()

        assert notification_gateway.flush()
        (event,) = notification_sink.of_type(NotificationEventType.ORDER_CONFIRM_PENDING)
        assert event.extra["quantity_changes"] == {
            "SKU-1": {
                "requested": 50,
                "approved": 100,
                "change": 50,
                "isIncreased": True,
                "isDecreased": False,
            },
        }

    def test_discarded_on_rollback(self, session, lifecycle, make_order, manager, notification_sink, notification_gateway, captured_logs):
        order = make_order()
        notification_gateway.flush()
        before = len(notification_sink.events)

        lifecycle.approve(order.id, manager, [QuantityApproval("SKU-1", 10)])
        session.rollback()

        assert pending_notifications(session) == []
        assert notification_gateway.flush()
        assert len(notification_sink.events) == before
        assert lifecycle.get_order(order.id).status == OrderStatus.UNDER_REVIEW
        discarded = [r for r in captured_logs() if r["message"] == "notifications_discarded"]
        assert discarded[-1]["event_types"] == ["ORDER_CONFIRM_PENDING"]

    def test_rejected_transition_queues_nothing(self, session, lifecycle, make_order, requester):
        order = make_order()

        with pytest.raises(NotAuthorizedError):
            lifecycle.approve(order.id, requester)

        assert pending_notifications(session) == []

    def test_savepoint_release_does_not_deliver(
        self, session, make_order, requester, dispatcher, notification_sink, notification_gateway
    ):
        order = make_order()
        notification_gateway.flush()
        before = len(notification_sink.events)

        savepoint = session.begin_nested()
        dispatcher.enqueue(session, NotificationEventType.STOCK_LOW, order, requester)
        savepoint.commit()

        assert notification_gateway.flush()
        assert len(notification_sink.events) == before
        assert pending_notifications(session) == [NotificationEventType.STOCK_LOW]

        session.commit()

        assert notification_sink.wait_for(before + 1)
        assert notification_sink.events[-1].event_type == NotificationEventType.STOCK_LOW

    def test_emit_now_skips_the_session(self, dispatcher, notification_sink, system_actor):
        dispatcher.emit_now(
            NotificationEventType.SYSTEM_ALERT, None, system_actor, extra={"job": "test"}
        )

        assert notification_sink.wait_for(1)
        event = notification_sink.events[0]
        assert event.order_id is None
        assert event.actor_role == "SYSTEM"
        assert event.extra == {"job": "test"}


class TestQueuedGateway:

    def test_sink_failure_never_reaches_workflow(
        self, session, manager_branches, requester, manager, branch_id, deterministic_clock
    ):
        gateway = QueuedNotificationGateway(_failing_sink, poll_interval=0.05)
        lifecycle = OrderLifecycleService(
            session, NotificationDispatcher(gateway), manager_branches, clock=deterministic_clock
        )
        try:
            order = lifecycle.create_order(requester, branch_id, [_line()])
            session.commit()
            result = lifecycle.approve(order.id, manager)
            session.commit()
            assert gateway.flush()
        finally:
            gateway.stop()

        assert result.to_status == OrderStatus.CONFIRM_PENDING
        assert gateway.stats.failed == 2

    def test_sink_failure_is_counted_and_logged(self, captured_logs, requester):
        gateway = QueuedNotificationGateway(_failing_sink, poll_interval=0.05)
        try:
            gateway.emit(NotificationEventType.ORDER_CREATED, None, requester)
            gateway.emit(NotificationEventType.ORDER_CONFIRMED, None, requester)
            assert gateway.flush()
        finally:
            gateway.stop()

        stats = gateway.stats
        assert stats.enqueued == 2
        assert stats.failed == 2
        assert stats.delivered == 0
        failures = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert len(failures) == 2
        assert failures[0]["exc_code"] == "NOTIFICATION_DELIVERY_FAILED"
        assert failures[0]["exc_event_type"] == "ORDER_CREATED"

    def test_worker_survives_a_failure(self, requester):
        sink = InMemoryNotificationSink()
        calls = []

        def flaky(event):
            calls.append(event)
            if len(calls) == 1:
                raise RuntimeError("first one fails")
            sink(event)

        gateway = QueuedNotificationGateway(flaky, poll_interval=0.05)
        try:
            gateway.emit(NotificationEventType.ORDER_CREATED, None, requester)
            gateway.emit(NotificationEventType.ORDER_CONFIRMED, None, requester)
            assert sink.wait_for(1)
        finally:
            gateway.stop()

        assert [e.event_type for e in sink.events] == [NotificationEventType.ORDER_CONFIRMED]
        assert gateway.stats.failed == 1
        assert gateway.stats.delivered == 1

    def test_full_queue_drops(self, requester, captured_logs):
        sink = InMemoryNotificationSink()
        gateway = QueuedNotificationGateway(sink, queue_size=1, autostart=False)

        gateway.emit(NotificationEventType.ORDER_CREATED, None, requester)
        gateway.emit(NotificationEventType.ORDER_CONFIRMED, None, requester)

        assert gateway.stats.enqueued == 1
        assert gateway.stats.dropped == 1
        assert any(r["message"] == "notification_dropped" for r in captured_logs())

        gateway.start()
        gateway.stop()
        assert [e.event_type for e in sink.events] == [NotificationEventType.ORDER_CREATED]

    def test_emit_does_not_wait_for_a_slow_sink(self, requester):
        release = threading.Event()
        sink = InMemoryNotificationSink()

        def slow(event):
            release.wait(5)
            sink(event)

        gateway = QueuedNotificationGateway(slow, poll_interval=0.05)
        try:
            for _ in range(3):
                gateway.emit(NotificationEventType.ORDER_CREATED, None, requester)
            assert sink.events == []
            release.set()
            assert sink.wait_for(3)
        finally:
            release.set()
            gateway.stop()

    def test_logging_sink(self, captured_logs, requester):
        gateway = QueuedNotificationGateway(logging_sink, poll_interval=0.05)
        try:
            gateway.emit(
                NotificationEventType.ORDER_CLOSED, None, requester, recipients=[requester.actor_id]
            )
            assert gateway.flush()
        finally:
            gateway.stop()

        delivered = [r for r in captured_logs() if r["message"] == "notification_delivered"]
        assert delivered[0]["event_type"] == "ORDER_CLOSED"
        assert delivered[0]["recipients"] == [str(requester.actor_id)]


class TestDedupeRecipients:

    def test_order_preserved_and_none_dropped(self):
        a, b, c = uuid4(), uuid4(), uuid4()
        assert dedupe_recipients(a, [b, None, a], None, (c, b)) == (a, b, c)

    def test_empty(self):
        assert dedupe_recipients() == ()
