"""
Tests for OrderSelector -- paginated order listings.

Covers:
- list_for_requester() / list_for_branch() / list_for_manager(): audience
  filtering, newest first, status filters, pagination metadata
- list_for_manager() only widens over active assignments
- get_order(), get_by_number(), count_by_status()
- Page and limit validation
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from replenishment_kernel.domain.dtos import ActorContext, OrderLineRequest
from replenishment_kernel.domain.lifecycle import ActorRole, OrderStatus
from replenishment_kernel.exceptions import InvalidPayloadError, OrderNotFoundError
from replenishment_kernel.selectors.order_selector import MAX_PAGE_SIZE, OrderSelector

LINES = [OrderLineRequest("SKU-1", 2, Decimal("5"))]


@pytest.fixture
def selector(session):
    return OrderSelector(session)


@pytest.fixture
def place_orders(session, lifecycle, deterministic_clock):
    """Create ``count`` orders one minute apart; returns them oldest first."""

    def _place(actor, branch_id, count=1):
        created = []
        for _ in range(count):
            created.append(lifecycle.create_order(actor, branch_id, LINES))
            deterministic_clock.advance(60)
        session.commit()
        return created

    return _place


class TestListings:

    def test_requester_sees_own_orders_newest_first(self, selector, place_orders, requester, branch_id):
        mine = place_orders(requester, branch_id, count=3)
        place_orders(ActorContext(uuid4(), ActorRole.REQUESTER), branch_id)

        page = selector.list_for_requester(requester.actor_id)

        assert [o.id for o in page.items] == [o.id for o in reversed(mine)]
        assert page.total == 3
        assert page.pages == 1

    def test_branch_listing(self, selector, place_orders, requester, branch_id):
        place_orders(requester, branch_id, count=2)
        place_orders(requester, uuid4())

        page = selector.list_for_branch(branch_id)

        assert page.total == 2
        assert {o.branch_id for o in page.items} == {branch_id}

    def test_pagination(self, selector, place_orders, requester, branch_id):
        orders = place_orders(requester, branch_id, count=5)

        first = selector.list_for_branch(branch_id, page=1, limit=2)
        last = selector.list_for_branch(branch_id, page=3, limit=2)

        assert first.total == 5
        assert first.pages == 3
        assert [o.order_number for o in first.items] == ["OR000005", "OR000004"]
        assert [o.id for o in last.items] == [orders[0].id]

    def test_page_past_the_end_is_empty(self, selector, place_orders, requester, branch_id):
        place_orders(requester, branch_id)

        page = selector.list_for_branch(branch_id, page=4)

        assert page.items == ()
        assert page.total == 1

    def test_status_filter(self, session, selector, place_orders, lifecycle, requester, manager, branch_id):
        orders = place_orders(requester, branch_id, count=3)
        lifecycle.approve(orders[0].id, manager)
        session.commit()

        pending = selector.list_for_branch(branch_id, status=OrderStatus.CONFIRM_PENDING)
        either = selector.list_for_branch(
            branch_id, status=[OrderStatus.CONFIRM_PENDING, OrderStatus.UNDER_REVIEW]
        )

        assert [o.id for o in pending.items] == [orders[0].id]
        assert either.total == 3

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, MAX_PAGE_SIZE + 1)])
    def test_bad_page_arguments(self, selector, branch_id, page, limit):
        with pytest.raises(InvalidPayloadError):
            selector.list_for_branch(branch_id, page=page, limit=limit)


class TestManagerListing:

    def test_spans_assigned_branches(self, session, selector, place_orders, manager_branches, manager, requester, branch_id):
        second_branch = uuid4()
        manager_branches.assign_manager(manager.actor_id, second_branch, actor_id=uuid4())
        session.commit()
        place_orders(requester, branch_id)
        place_orders(requester, second_branch)
        place_orders(requester, uuid4())

        page = selector.list_for_manager(manager.actor_id)

        assert page.total == 2
        assert {o.branch_id for o in page.items} == {branch_id, second_branch}

    def test_inactive_assignment_hides_branch(self, session, selector, place_orders, manager_branches, manager, requester, branch_id):
        place_orders(requester, branch_id)
        manager_branches.remove_manager(manager.actor_id, branch_id, actor_id=uuid4())
        session.commit()

        assert selector.list_for_manager(manager.actor_id).total == 0


class TestLookups:

    def test_get_order(self, selector, place_orders, requester, branch_id):
        (order,) = place_orders(requester, branch_id)

        assert selector.get_order(order.id).order_number == order.order_number

    def test_get_order_unknown(self, selector):
        with pytest.raises(OrderNotFoundError):
            selector.get_order(uuid4())

    def test_get_by_number(self, selector, place_orders, requester, branch_id):
        (order,) = place_orders(requester, branch_id)

        assert selector.get_by_number(order.order_number).id == order.id
        assert selector.get_by_number("OR999999") is None

    def test_count_by_status(self, session, selector, place_orders, lifecycle, requester, manager, branch_id):
        orders = place_orders(requester, branch_id, count=3)
        place_orders(requester, uuid4())
        lifecycle.approve(orders[1].id, manager)
        session.commit()

        counts = selector.count_by_status(branch_id)

        assert counts[OrderStatus.UNDER_REVIEW] == 2
        assert counts[OrderStatus.CONFIRM_PENDING] == 1
        assert counts[OrderStatus.CLOSED_ORDER] == 0
        assert sum(selector.count_by_status().values()) == 4
