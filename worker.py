"""
Standalone simulation worker: drains the dispatch queue one message at a time
and runs the reconciliation sweep on a cadence.

Usage:
  python worker.py
"""

from __future__ import annotations

import asyncio
import logging
import signal

from simlab.core.config import settings
from simlab.core.database import close_client
from simlab.core.logs import configure_logging
from simlab.services.bootstrap import build_reconciler, build_services, build_worker, run_startup

logger = logging.getLogger("simlab.worker")


async def run() -> None:
    services = build_services(settings)
    await run_startup(services)
    worker = build_worker(services, settings)
    reconciler = build_reconciler(services, settings)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Waiting for messages in %s", settings.queue_name)
    consumer = asyncio.create_task(worker.run(stop))
    sweeper = asyncio.create_task(reconciler.run_periodic(stop, settings.reconcile_interval_s))

    await stop.wait()
    logger.info("Shutting down worker")
    # Abandon any in-flight compute; the worker hands the job back to Submitted.
    consumer.cancel()
    sweeper.cancel()
    await asyncio.gather(consumer, sweeper, return_exceptions=True)
    close_client()


def main() -> None:
    configure_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
