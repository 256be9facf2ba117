"""Outbox poller.

Runs OutboxWorker.process_batch in a loop for deployments without a tasks
backend. Each batch gets its own correlation id.

Usage:
    chatrelay-worker            # poll forever
    chatrelay-worker --once     # drain one batch and exit
"""

from __future__ import annotations

import argparse
import threading

from chatrelay.composition import ChatRelay, build_relay
from chatrelay.domain.outbox_worker import BatchResult
from chatrelay.observability.correlation import correlation_scope
from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)


def run_once(relay: ChatRelay, limit: int | None = None) -> BatchResult:
    with correlation_scope():
        result = relay.outbox_worker.process_batch(limit)
        if result.processed:
            logger.info(
                "outbox batch done",
                extra={
                    "extra_fields": {
                        "processed": result.processed,
                        "sent": result.sent,
                        "retried": result.retried,
                        "failed": result.failed,
                    }
                },
            )
        return result


def run_forever(relay: ChatRelay, stop: threading.Event | None = None) -> None:
    """Poll until `stop` is set. A full batch is followed by another one immediately."""
    stop = stop or threading.Event()
    settings = relay.outbox_settings
    logger.info(
        "outbox poller started",
        extra={
            "extra_fields": {
                "batchSize": settings.batch_size,
                "pollIntervalSeconds": settings.poll_interval_seconds,
            }
        },
    )
    while not stop.is_set():
        try:
            result = run_once(relay, settings.batch_size)
        except Exception:
            # Storage outage: log and keep polling
            logger.exception("outbox batch crashed")
            stop.wait(settings.poll_interval_seconds)
            continue
        if result.processed < settings.batch_size:
            stop.wait(settings.poll_interval_seconds)
    logger.info("outbox poller stopped")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="chatrelay-worker")
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    args = parser.parse_args(argv)

    relay = build_relay()
    if args.once:
        run_once(relay, relay.outbox_settings.batch_size)
        return 0
    try:
        run_forever(relay)
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
