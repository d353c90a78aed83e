"""
Notification gateway -- fire-and-forget event delivery.

Responsibility:
    Accepts typed lifecycle events and hands them to a delivery sink on a
    separate worker thread.  The workflow never waits on delivery and never
    sees a delivery failure.

Architecture position:
    Kernel > Services.  The lifecycle and issue services talk to
    ``NotificationDispatcher``, which holds events until the surrounding
    transaction commits and then calls ``NotificationGateway.emit``.
    ``QueuedNotificationGateway`` pushes onto a bounded in-process queue
    consumed by one worker thread that calls the sink.

Invariants enforced:
    - At most one event per committed transition: events queued inside a
      transaction are released by its commit and discarded by its rollback.
    - ``emit`` never blocks and never raises: a full queue drops the event
      (logged, counted).
    - A sink exception is logged with the event type and order id, counted,
      and the worker moves on to the next event.

Non-goals:
    - Transport, templates, retries.  Sinks own those concerns.
    - Ordering beyond best-effort FIFO.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol
from uuid import UUID, uuid4

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from replenishment_kernel.domain.clock import Clock, SystemClock
from replenishment_kernel.domain.dtos import ActorContext, OrderDTO
from replenishment_kernel.domain.events import (
    NotificationEvent,
    NotificationEventType,
    dedupe_recipients,
)
from replenishment_kernel.exceptions import NotificationDeliveryError
from replenishment_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

NotificationSink = Callable[[NotificationEvent], None]


class NotificationGateway(Protocol):
    """What the workflow needs from a notification backend."""

    def emit(
        self,
        event_type: NotificationEventType,
        order: OrderDTO | None,
        actor: ActorContext | None,
        extra: dict[str, Any] | None = None,
        recipients: Iterable[UUID] = (),
    ) -> None:
        ...


@dataclass(frozen=True)
class NotificationStats:
    enqueued: int
    delivered: int
    failed: int
    dropped: int


def build_event(
    event_type: NotificationEventType,
    order: OrderDTO | None,
    actor: ActorContext | None,
    occurred_at,
    extra: dict[str, Any] | None = None,
    recipients: Iterable[UUID] = (),
) -> NotificationEvent:
    return NotificationEvent(
        event_id=uuid4(),
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor.actor_id if actor else None,
        actor_role=actor.role.value if actor else None,
        recipients=dedupe_recipients(recipients),
        order_id=order.id if order else None,
        order_number=order.order_number if order else None,
        status=order.status.value if order else None,
        extra=dict(extra or {}),
    )


class QueuedNotificationGateway:
    """Bounded queue + worker thread in front of a sink.

    The worker starts lazily on the first ``emit`` unless ``autostart`` is
    False.
    """

    def __init__(
        self,
        sink: NotificationSink,
        clock: Clock | None = None,
        queue_size: int = 1000,
        poll_interval: float = 0.5,
        autostart: bool = True,
    ):
        self._sink = sink
        self._clock = clock or SystemClock()
        self._queue: queue.Queue[NotificationEvent] = queue.Queue(maxsize=queue_size)
        self._poll_interval = poll_interval
        self._autostart = autostart
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._enqueued = 0
        self._delivered = 0
        self._failed = 0
        self._dropped = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def emit(
        self,
        event_type: NotificationEventType,
        order: OrderDTO | None,
        actor: ActorContext | None,
        extra: dict[str, Any] | None = None,
        recipients: Iterable[UUID] = (),
    ) -> None:
        notification = build_event(
            event_type, order, actor, self._clock.now(), extra, recipients
        )
        if self._autostart and not self.is_running:
            self.start()
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            logger.warning(
                "notification_dropped",
                extra={
                    "event_type": event_type.value,
                    "order_id": str(notification.order_id) if notification.order_id else None,
                    "queue_size": self._queue.maxsize,
                },
            )
            return
        with self._lock:
            self._enqueued += 1
        logger.debug(
            "notification_enqueued",
            extra={
                "event_type": event_type.value,
                "event_id": str(notification.event_id),
                "recipients": len(notification.recipients),
            },
        )

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                name="notification-worker",
                daemon=True,
            )
            self._thread.start()
        logger.info("notification_worker_started")

    def stop(self, timeout: float = 10.0) -> None:
        """Drain what is queued, then stop the worker."""
        self.flush(timeout)
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
        logger.info("notification_worker_stopped", extra=self._stats_extra())

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event was handled. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline or not self.is_running:
                return False
            time.sleep(0.01)
        return True

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> NotificationStats:
        with self._lock:
            return NotificationStats(
                enqueued=self._enqueued,
                delivered=self._delivered,
                failed=self._failed,
                dropped=self._dropped,
            )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not (self._stop_event.is_set() and self._queue.empty()):
            try:
                notification = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            try:
                self._deliver(notification)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: NotificationEvent) -> None:
        try:
            self._sink(notification)
        except Exception as exc:
            with self._lock:
                self._failed += 1
            error = NotificationDeliveryError(
                notification.event_type.value,
                str(notification.order_id) if notification.order_id else None,
                str(exc),
            )
            logger.error(
                "notification_delivery_failed",
                exc_info=(type(error), error, exc.__traceback__),
                extra={"event_id": str(notification.event_id)},
            )
            return
        with self._lock:
            self._delivered += 1

    def _stats_extra(self) -> dict[str, int]:
        s = self.stats
        return {
            "enqueued": s.enqueued,
            "delivered": s.delivered,
            "failed": s.failed,
            "dropped": s.dropped,
        }


class InMemoryNotificationSink:
    """Thread-safe sink that keeps every event; for tests and local runs."""

    def __init__(self) -> None:
        self._events: list[NotificationEvent] = []
        self._cond = threading.Condition()

    def __call__(self, notification: NotificationEvent) -> None:
        with self._cond:
            self._events.append(notification)
            self._cond.notify_all()

    @property
    def events(self) -> list[NotificationEvent]:
        with self._cond:
            return list(self._events)

    def of_type(self, event_type: NotificationEventType) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self._events) >= count, timeout)


def logging_sink(notification: NotificationEvent) -> None:
    """Default sink: record each event as a structured log line."""
    logger.info(
        "notification_delivered",
        extra={
            "event_type": notification.event_type.value,
            "event_id": str(notification.event_id),
            "order_number": notification.order_number,
            "status": notification.status,
            "recipients": [str(r) for r in notification.recipients],
        },
    )


# ---------------------------------------------------------------------------
# Commit-bound dispatch
# ---------------------------------------------------------------------------

_PENDING_KEY = "replenishment_pending_notifications"
_HOOKED_KEY = "replenishment_notification_hooks"


@dataclass(frozen=True)
class _PendingNotification:
    gateway: NotificationGateway
    event_type: NotificationEventType
    order: OrderDTO | None
    actor: ActorContext | None
    extra: dict[str, Any]
    recipients: tuple[UUID, ...]


class NotificationDispatcher:
    """Queues notifications on a session and releases them on commit.

    Services call ``enqueue`` after the transition has been flushed; the
    gateway only sees the event once the caller's ``commit()`` succeeds.
    A rollback discards everything queued in that transaction.
    """

    def __init__(self, gateway: NotificationGateway):
        self._gateway = gateway

    @property
    def gateway(self) -> NotificationGateway:
        return self._gateway

    def enqueue(
        self,
        session: Session,
        event_type: NotificationEventType,
        order: OrderDTO | None,
        actor: ActorContext | None,
        recipients: Iterable[UUID] = (),
        extra: dict[str, Any] | None = None,
    ) -> None:
        _install_hooks(session)
        session.info.setdefault(_PENDING_KEY, []).append(
            _PendingNotification(
                gateway=self._gateway,
                event_type=event_type,
                order=order,
                actor=actor,
                extra=dict(extra or {}),
                recipients=dedupe_recipients(recipients),
            )
        )

    def emit_now(
        self,
        event_type: NotificationEventType,
        order: OrderDTO | None,
        actor: ActorContext | None,
        recipients: Iterable[UUID] = (),
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Emit outside any transaction (scheduler alerts)."""
        _safe_emit(
            _PendingNotification(
                self._gateway, event_type, order, actor,
                dict(extra or {}), dedupe_recipients(recipients),
            )
        )


def pending_notifications(session: Session) -> list[NotificationEventType]:
    """Event types waiting for this session's commit."""
    return [p.event_type for p in session.info.get(_PENDING_KEY, [])]


def _install_hooks(session: Session) -> None:
    if session.info.get(_HOOKED_KEY):
        return
    event.listen(session, "after_commit", _release_pending)
    event.listen(session, "after_transaction_end", _discard_pending)
    session.info[_HOOKED_KEY] = True


def _release_pending(session: Session) -> None:
    # after_commit also fires when a SAVEPOINT is released.
    if session.in_nested_transaction():
        return
    pending = session.info.pop(_PENDING_KEY, [])
    for item in pending:
        _safe_emit(item)


def _discard_pending(session: Session, transaction: SessionTransaction) -> None:
    # Runs after every root transaction ends; a commit has already released
    # its events, so anything left belongs to a rollback or close.
    if transaction.parent is not None:
        return
    discarded = session.info.pop(_PENDING_KEY, [])
    if discarded:
        logger.info(
            "notifications_discarded",
            extra={"event_types": [p.event_type.value for p in discarded]},
        )


def _safe_emit(item: _PendingNotification) -> None:
    try:
        item.gateway.emit(
            item.event_type, item.order, item.actor, item.extra, item.recipients
        )
    except Exception:
        # Gateways must not raise; a broken one still cannot undo a commit.
        logger.exception(
            "notification_emit_failed",
            extra={"event_type": item.event_type.value},
        )
