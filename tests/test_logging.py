"""Tests for the structured logging system (replenishment_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from replenishment_kernel.domain.lifecycle import OrderStatus
from replenishment_kernel.exceptions import InvalidStateError
from replenishment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "replenishment_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("order_transition", extra={"version": 3, "to_status": "CONFIRMED"})

        record = _parse_log(stream)
        assert record["version"] == 3
        assert record["to_status"] == "CONFIRMED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(order_id="ord-1", actor_role="MANAGER")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["order_id"] == "ord-1"
        assert record["actor_role"] == "MANAGER"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(order_id="from-context"):
            get_logger("test").info("clash", extra={"order_id": "from-extra"})

        assert _parse_log(stream)["order_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "traceback" in record

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidStateError("ord-9", "CLOSED_ORDER", "confirm", ("CONFIRM_PENDING",))
        except InvalidStateError:
            get_logger("test").warning("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVALID_STATE"
        assert record["exc_type"] == "InvalidStateError"
        assert record["exc_order_id"] == "ord-9"
        assert record["exc_current_status"] == "CLOSED_ORDER"
        assert record["exc_expected"] == ["CONFIRM_PENDING"]

    def test_rich_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={
                "order_uuid": uid,
                "total": Decimal("5000.00"),
                "status": OrderStatus.CLOSED_ORDER,
                "at": datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc),
                "skus": ("A", "B"),
            },
        )

        record = _parse_log(stream)
        assert record["order_uuid"] == str(uid)
        assert record["total"] == "5000.00"
        assert record["status"] == "CLOSED_ORDER"
        assert record["at"] == "2024-01-08T10:00:00+00:00"
        assert record["skus"] == ["A", "B"]

    def test_unknown_values_fall_back_to_str(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        class Opaque:
            def __str__(self):
                return "opaque-value"

        get_logger("test").info("typed", extra={"thing": Opaque()})

        assert _parse_log(stream)["thing"] == "opaque-value"

    def test_level_filtering(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", order_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "order_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(order_id="outer")
        with LogContext.bind(order_id="inner"):
            assert LogContext.get_all()["order_id"] == "inner"
        assert LogContext.get_all()["order_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(actor_id="temp"):
            assert LogContext.get_all()["actor_id"] == "temp"
        assert "actor_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_and_none(self):
        with LogContext.bind(order_id=None, branch_id="b-1"):
            assert LogContext.get_all() == {}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            order_id="o",
            actor_id="a",
            actor_role="REQUESTER",
            trace_id="t",
        )
        assert len(LogContext.get_all()) == 5


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        structured = [
            h for h in logging.getLogger("replenishment_kernel").handlers
            if isinstance(h, logging.StreamHandler)
            and isinstance(h.formatter, StructuredFormatter)
        ]
        assert structured == [h1]

    def test_get_logger_returns_child(self):
        assert get_logger("services.order_store").name == "replenishment_kernel.services.order_store"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "replenishment_kernel.deep.nested.module"
