"""
AutoCloseScheduler -- closes received orders once their deadline passes.

Contract:
    ``run_once()`` selects every CONFIRM_ORDER_RECEIVED order whose
    ``auto_close_at`` is at or before now and closes each one in its own
    session and transaction as the SYSTEM actor.  ``start()`` / ``stop()``
    run it on a background thread at each match of a cron expression.

Architecture: Kernel > Services.  Uses ``domain/schedule.py`` for pure cron
    evaluation and ``OrderLifecycleService.close_order`` for the close itself.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - One order's failure never stops the batch: InvalidStateError (already
      closed, no longer due) is a skip, anything else is logged with its
      traceback and counted as a failure.
    - Idempotent: closed orders are never selected again, and the close is
      a conditional update, so overlapping runs cannot close twice.
    - Graceful shutdown: the stop signal is honoured between orders.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from replenishment_kernel.domain.clock import Clock, SystemClock
from replenishment_kernel.domain.dtos import ActorContext
from replenishment_kernel.domain.events import NotificationEventType
from replenishment_kernel.domain.schedule import next_run_after, parse_cron
from replenishment_kernel.exceptions import InvalidStateError
from replenishment_kernel.logging_config import LogContext, get_logger
from replenishment_kernel.services.notification_gateway import NotificationDispatcher
from replenishment_kernel.services.order_lifecycle_service import OrderLifecycleService
from replenishment_kernel.services.order_store import OrderStore

logger = get_logger("services.auto_close")

DEFAULT_SCHEDULE = "5 2 * * *"


@dataclass(frozen=True)
class AutoCloseItem:
    order_id: UUID
    outcome: str  # closed | skipped | failed
    error_code: str | None = None


@dataclass(frozen=True)
class AutoCloseRunResult:
    checked: int
    closed: int
    skipped: int
    failed: int
    items: tuple[AutoCloseItem, ...] = ()
    started_at: datetime | None = None


class AutoCloseScheduler:
    """In-process daily job for the auto-close deadline.

    Non-goals:
        - NOT a distributed scheduler (no leader election); concurrent runs
          are safe, not coordinated.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], OrderLifecycleService],
        clock: Clock | None = None,
        system_actor_id: UUID | None = None,
        schedule: str = DEFAULT_SCHEDULE,
        tz: tzinfo = timezone.utc,
        alert_dispatcher: NotificationDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._clock = clock or SystemClock()
        self._actor = ActorContext.system(system_actor_id or uuid4())
        self._schedule = parse_cron(schedule)
        self._tz = tz
        self._alerts = alert_dispatcher
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_result: AutoCloseRunResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run_once(self) -> AutoCloseRunResult:
        """Close every order that is due now (public for testing and the CLI)."""
        started_at = self._clock.now()
        due = self._select_due(started_at)

        items: list[AutoCloseItem] = []
        for order_id in due:
            if self._stop_event.is_set():
                logger.info("auto_close_run_interrupted", extra={"remaining": len(due) - len(items)})
                break
            items.append(self._close_one(order_id))

        result = AutoCloseRunResult(
            checked=len(due),
            closed=sum(1 for i in items if i.outcome == "closed"),
            skipped=sum(1 for i in items if i.outcome == "skipped"),
            failed=sum(1 for i in items if i.outcome == "failed"),
            items=tuple(items),
            started_at=started_at,
        )
        self._last_result = result

        if result.failed:
            self._raise_alert(result)

        logger.info(
            "auto_close_run_completed",
            extra={
                "checked": result.checked,
                "closed": result.closed,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result

    def start(self) -> None:
        """Run on a background thread at each cron match."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="auto-close-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "auto_close_scheduler_started",
            extra={"schedule": self._schedule.expression, "next_run_at": self.next_run_at()},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current order to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("auto_close_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_result(self) -> AutoCloseRunResult | None:
        return self._last_result

    def next_run_at(self, after: datetime | None = None) -> datetime:
        return next_run_after(self._schedule, after or self._clock.now(), self._tz)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            delay = (self.next_run_at() - self._clock.now()).total_seconds()
            if self._stop_event.wait(timeout=max(delay, 0.0)):
                break
            try:
                self.run_once()
            except Exception:
                logger.exception("auto_close_run_exception")

    def _select_due(self, now: datetime) -> list[UUID]:
        session = self._session_factory()
        try:
            return OrderStore(session, self._clock).find_due_for_auto_close(now)
        finally:
            session.close()

    def _close_one(self, order_id: UUID) -> AutoCloseItem:
        session = self._session_factory()
        with LogContext.bind(order_id=str(order_id)):
            try:
                service = self._service_factory(session)
                service.close_order(order_id, self._actor)
                session.commit()
            except InvalidStateError as exc:
                session.rollback()
                logger.info(
                    "auto_close_order_skipped",
                    extra={"error_code": exc.code, "current_status": exc.current_status},
                )
                return AutoCloseItem(order_id, "skipped", exc.code)
            except Exception as exc:
                session.rollback()
                logger.exception("auto_close_order_failed")
                return AutoCloseItem(order_id, "failed", getattr(exc, "code", type(exc).__name__))
            finally:
                session.close()
        return AutoCloseItem(order_id, "closed")

    def _raise_alert(self, result: AutoCloseRunResult) -> None:
        if self._alerts is None:
            return
        self._alerts.emit_now(
            NotificationEventType.SYSTEM_ALERT,
            None,
            self._actor,
            extra={
                "job": "auto_close",
                "failed": result.failed,
                "failed_order_ids": [str(i.order_id) for i in result.items if i.outcome == "failed"],
            },
        )
