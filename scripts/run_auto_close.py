#!/usr/bin/env python3
"""
Run the auto-close job: close every received order whose working-hours
deadline has passed.

Configuration comes from get_active_config(); --config overrides individual
sections of the packaged defaults and --database-url overrides database.url.

Usage:
    python3 scripts/run_auto_close.py --once [options]
    python3 scripts/run_auto_close.py [options]        # daemon, cron-driven

Examples:
    # One pass now, against the configured database
    python3 scripts/run_auto_close.py --once

    # Daemon with a site config file
    python3 scripts/run_auto_close.py --config /etc/replenishment/workflow.yaml

Exit status (--once): 0 when no order failed, 1 otherwise.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from replenishment_config import get_active_config, lifecycle_options, schedule_timezone  # noqa: E402
from replenishment_kernel.db.engine import (  # noqa: E402
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from replenishment_kernel.logging_config import configure_logging, get_logger  # noqa: E402
from replenishment_kernel.services import (  # noqa: E402
    AutoCloseScheduler,
    ManagerBranchService,
    NotificationDispatcher,
    OrderLifecycleService,
    QueuedNotificationGateway,
    logging_sink,
)

logger = get_logger("scripts.run_auto_close")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Close received orders whose auto-close deadline has passed.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit instead of waiting for the cron schedule.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file overriding sections of the packaged defaults.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (default: database.url from config).",
    )
    parser.add_argument(
        "--system-actor-id",
        type=UUID,
        default=None,
        help="Actor id recorded on closes (default: random per process).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="DEBUG logging.",
    )
    return parser.parse_args(argv)


def build_scheduler(
    config, system_actor_id: UUID | None, dispatcher: NotificationDispatcher
) -> AutoCloseScheduler:
    options = lifecycle_options(config)

    def service_factory(session):
        return OrderLifecycleService(
            session, dispatcher, ManagerBranchService(session), **options
        )

    return AutoCloseScheduler(
        session_factory=get_session_factory(),
        service_factory=service_factory,
        system_actor_id=system_actor_id,
        schedule=config.auto_close.schedule,
        tz=schedule_timezone(config),
        alert_dispatcher=dispatcher,
    )


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    config = get_active_config(args.config)
    init_engine_from_url(
        args.database_url or config.database.url, echo=config.database.echo
    )
    if args.create_tables:
        create_tables()

    gateway = QueuedNotificationGateway(
        logging_sink,
        queue_size=config.notifications.queue_size,
        poll_interval=config.notifications.worker_timeout_seconds,
    )
    scheduler = build_scheduler(config, args.system_actor_id, NotificationDispatcher(gateway))

    try:
        if args.once:
            result = scheduler.run_once()
            print(
                f"checked={result.checked} closed={result.closed} "
                f"skipped={result.skipped} failed={result.failed}"
            )
            return 1 if result.failed else 0

        stopped = threading.Event()

        def _handle_signal(signum, _frame):
            logger.info("shutdown_requested", extra={"signal": signum})
            stopped.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        scheduler.start()
        print(f"auto-close scheduler running; next run at {scheduler.next_run_at().isoformat()}")
        stopped.wait()
        scheduler.stop()
        return 0
    finally:
        gateway.stop()


if __name__ == "__main__":
    sys.exit(main())
