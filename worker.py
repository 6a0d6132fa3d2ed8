#!/usr/bin/env python
"""
PodcastFlow Background Worker

Runs the same cycles as the API lifespan loops, out of process:
- notification queue + webhook outbox, every NOTIFICATION_POLL_INTERVAL
- reservation hold expiry, every EXPIRY_SWEEP_INTERVAL

    python worker.py

Start the API with WORKERS_ENABLED=false when this process is deployed.
"""

import logging
import signal
import sys
import threading
import time

from podcastflow.config import settings
from podcastflow.main import run_expiry_cycle, run_notification_cycle
from podcastflow.utils.logging_config import set_request_context, setup_logging

logger = logging.getLogger("podcastflow.worker")

stop_event = threading.Event()


def request_stop(signum, frame):
    logger.info(f"Signal {signum} received, stopping after the current cycle")
    stop_event.set()


def run_cycle(cycle: int, sweep_due: bool) -> None:
    set_request_context(f"worker-{cycle}")
    started = time.monotonic()

    stats = run_notification_cycle()
    expired = run_expiry_cycle() if sweep_due else 0

    if any(stats.values()) or expired:
        logger.info(
            f"Cycle {cycle}: "
            f"Queue {stats['queue_success']}✓/{stats['queue_failed']}✗ | "
            f"Outbox {stats['outbox_success']}✓/{stats['outbox_failed']}✗ | "
            f"released {stats['released']} | expired {expired} | "
            f"{time.monotonic() - started:.2f}s"
        )


def run_worker() -> None:
    logger.info(
        f"Worker started (poll {settings.notification_poll_interval}s, "
        f"expiry sweep {settings.expiry_sweep_interval}s)"
    )

    cycle = 0
    next_sweep = 0.0
    while not stop_event.is_set():
        cycle += 1
        now = time.monotonic()
        sweep_due = now >= next_sweep
        if sweep_due:
            next_sweep = now + settings.expiry_sweep_interval

        try:
            run_cycle(cycle, sweep_due)
        except Exception as e:
            logger.exception(f"Cycle {cycle} failed: {e}")

        stop_event.wait(settings.notification_poll_interval)

    logger.info("Worker stopped")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    try:
        run_worker()
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
