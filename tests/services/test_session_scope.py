"""
Tests for session_scope() -- the transaction owner around service calls.

Covers:
- Commit on normal exit releases queued notifications
- Rollback on exception: nothing persisted, nothing delivered, the
  rollback is logged and the exception re-raised
"""

from decimal import Decimal

import pytest

from replenishment_kernel.db.engine import session_scope
from replenishment_kernel.domain.dtos import OrderLineRequest
from replenishment_kernel.domain.events import NotificationEventType
from replenishment_kernel.selectors.order_selector import OrderSelector

LINES = [OrderLineRequest("SKU-1", 4, Decimal("12.50"))]


class TestSessionScope:

    def test_commit_releases_notifications(
        self, session_factory, make_lifecycle, manager_branches, requester, branch_id,
        notification_sink, notification_gateway,
    ):
        with session_scope(session_factory) as session:
            order = make_lifecycle(session).create_order(requester, branch_id, LINES)

        assert notification_sink.wait_for(1)
        assert notification_sink.events[0].event_type == NotificationEventType.ORDER_CREATED
        reader = session_factory()
        try:
            assert OrderSelector(reader).get_order(order.id).total_value == Decimal("50.00")
        finally:
            reader.close()

    def test_exception_rolls_back(
        self, session_factory, make_lifecycle, manager_branches, requester, branch_id,
        notification_sink, notification_gateway, captured_logs,
    ):
        with pytest.raises(RuntimeError, match="caller failed"):
            with session_scope(session_factory) as session:
                make_lifecycle(session).create_order(requester, branch_id, LINES)
                raise RuntimeError("caller failed")

        assert notification_gateway.flush()
        assert notification_sink.events == []
        reader = session_factory()
        try:
            assert OrderSelector(reader).list_for_branch(branch_id).total == 0
        finally:
            reader.close()
        rolled_back = [r for r in captured_logs() if r["message"] == "transaction_rolled_back"]
        assert rolled_back[0]["exc_message"] == "caller failed"
