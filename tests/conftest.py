"""
Pytest fixtures for the replenishment kernel test suite.

Provides:
- A file-backed SQLite database per test (each session gets its own
  connection, so multi-session and multi-threaded tests behave like a
  real deployment)
- Deterministic clock, structured log capture
- A real queued notification gateway feeding an in-memory sink
- Actors, a branch with an assigned manager, and order factories
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from replenishment_kernel.db.engine import build_engine, create_tables
from replenishment_kernel.domain.clock import DeterministicClock
from replenishment_kernel.domain.dtos import (
    ActorContext,
    OrderLineRequest,
    TrackingDetails,
)
from replenishment_kernel.domain.lifecycle import ActorRole, OrderStatus
from replenishment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from replenishment_kernel.services.issue_service import IssueService
from replenishment_kernel.services.manager_branch_service import ManagerBranchService
from replenishment_kernel.services.notification_gateway import (
    InMemoryNotificationSink,
    NotificationDispatcher,
    QueuedNotificationGateway,
)
from replenishment_kernel.services.order_lifecycle_service import OrderLifecycleService

AUTO_CLOSE_HOURS = 56


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture replenishment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, lifecycle):
            lifecycle.confirm(...)
            logs = captured_logs()
            assert any(r["message"] == "order_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("replenishment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'replenishment.db'}"


@pytest.fixture
def engine(database_url):
    eng = build_engine(database_url, sqlite_busy_timeout=10.0)
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock():
    """Clock frozen at Monday 2024-01-08 10:00 UTC."""
    return DeterministicClock()


# =============================================================================
# Notifications
# =============================================================================


@pytest.fixture
def notification_sink():
    return InMemoryNotificationSink()


@pytest.fixture
def notification_gateway(notification_sink, deterministic_clock):
    gateway = QueuedNotificationGateway(
        notification_sink, clock=deterministic_clock, poll_interval=0.05
    )
    yield gateway
    gateway.stop(timeout=5.0)


@pytest.fixture
def dispatcher(notification_gateway):
    return NotificationDispatcher(notification_gateway)


# =============================================================================
# Actors and branch
# =============================================================================


@pytest.fixture
def branch_id():
    return uuid4()


@pytest.fixture
def requester():
    return ActorContext(actor_id=uuid4(), role=ActorRole.REQUESTER)


@pytest.fixture
def manager():
    return ActorContext(actor_id=uuid4(), role=ActorRole.MANAGER)


@pytest.fixture
def other_manager():
    return ActorContext(actor_id=uuid4(), role=ActorRole.MANAGER)


@pytest.fixture
def packager():
    return ActorContext(actor_id=uuid4(), role=ActorRole.PACKAGER)


@pytest.fixture
def dispatcher_actor():
    return ActorContext(actor_id=uuid4(), role=ActorRole.DISPATCHER)


@pytest.fixture
def system_actor():
    return ActorContext.system(uuid4())


@pytest.fixture
def manager_branches(session, deterministic_clock, branch_id, manager):
    """ManagerBranchService with ``manager`` assigned to ``branch_id``."""
    service = ManagerBranchService(session, deterministic_clock)
    service.assign_manager(manager.actor_id, branch_id, actor_id=uuid4())
    session.commit()
    return service


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def make_lifecycle(dispatcher, deterministic_clock):
    """Build an OrderLifecycleService for any session."""

    def _make(session, **kwargs):
        kwargs.setdefault("auto_close_hours", AUTO_CLOSE_HOURS)
        return OrderLifecycleService(
            session,
            dispatcher,
            ManagerBranchService(session, deterministic_clock),
            clock=deterministic_clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def lifecycle(session, manager_branches, make_lifecycle):
    return make_lifecycle(session)


@pytest.fixture
def issues(session, manager_branches, dispatcher, deterministic_clock):
    return IssueService(session, dispatcher, manager_branches, clock=deterministic_clock)


# =============================================================================
# Orders
# =============================================================================


def _line(sku="SKU-1", quantity=50, unit_price="50", **kwargs):
    price = None if unit_price is None else Decimal(unit_price)
    return OrderLineRequest(sku=sku, quantity=quantity, unit_price=price, **kwargs)


@pytest.fixture
def make_order(session, lifecycle, requester, branch_id):
    """Create and commit an order; defaults to one line of 50 x 50."""

    def _make(lines=None, actor=None, remarks=None):
        dto = lifecycle.create_order(
            actor or requester,
            branch_id,
            lines if lines is not None else [_line()],
            remarks=remarks,
        )
        session.commit()
        return dto

    return _make


@pytest.fixture
def drive_to(session, lifecycle, requester, manager):
    """Move an existing order forward to ``target`` along the happy path.

    Each step commits, as a request handler would.
    """

    steps = [
        (OrderStatus.CONFIRM_PENDING, lambda oid: lifecycle.approve(oid, manager, [])),
        (OrderStatus.APPROVED_ORDER, lambda oid: lifecycle.confirm(oid, requester)),
        (
            OrderStatus.ARRANGING,
            lambda oid: lifecycle.update_arranging_stage(oid, manager, OrderStatus.ARRANGING),
        ),
        (
            OrderStatus.ARRANGED,
            lambda oid: lifecycle.update_arranging_stage(
                oid, manager, OrderStatus.ARRANGED, evidence=["arranged.jpg"]
            ),
        ),
        (
            OrderStatus.SENT_FOR_PACKAGING,
            lambda oid: lifecycle.update_arranging_stage(
                oid, manager, OrderStatus.SENT_FOR_PACKAGING, evidence=["handover.jpg"]
            ),
        ),
        (
            OrderStatus.UNDER_PACKAGING,
            lambda oid: lifecycle.update_status(oid, manager, OrderStatus.UNDER_PACKAGING),
        ),
        (
            OrderStatus.IN_TRANSIT,
            lambda oid: lifecycle.update_status(
                oid,
                manager,
                OrderStatus.IN_TRANSIT,
                evidence=["waybill.pdf"],
                tracking=TrackingDetails("COURIER-1", "https://track.example/COURIER-1"),
            ),
        ),
        (
            OrderStatus.CONFIRM_ORDER_RECEIVED,
            lambda oid: lifecycle.confirm_received(oid, requester),
        ),
    ]

    def _drive(order_id, target):
        result = None
        for status, step in steps:
            result = step(order_id)
            session.commit()
            if status == target:
                return result.order
        raise AssertionError(f"{target} is not on the happy path")

    return _drive

