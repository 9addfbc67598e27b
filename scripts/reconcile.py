"""
Run one reconciliation sweep by hand.

Re-enqueues Submitted jobs whose dispatch is older than SUBMITTED_GRACE_S and
recovers Running jobs idle for RUNNING_STALE_AFTER_S (counted as a failed
attempt).

Usage:
  python -m scripts.reconcile [--stale-after 900] [--grace 120]
"""

from __future__ import annotations

import argparse
import asyncio

from simlab.core.config import settings
from simlab.core.database import close_client
from simlab.core.logs import configure_logging
from simlab.services.bootstrap import build_services
from simlab.services.reconcile import Reconciler


async def _run(stale_after: float, grace: float) -> None:
    services = build_services(settings)
    reconciler = Reconciler(
        services.store,
        services.queue,
        retry_limit=settings.worker_retry_limit,
        running_stale_after_s=stale_after,
        submitted_grace_s=grace,
    )
    try:
        report = await reconciler.sweep()
    finally:
        close_client()
    print(f"requeued={len(report.requeued)} recovered={len(report.recovered)} failed={len(report.failed)}")
    for job_id in report.failed:
        print(f"FAILED {job_id}")


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--stale-after", type=float, default=settings.running_stale_after_s)
    ap.add_argument("--grace", type=float, default=settings.submitted_grace_s)
    args = ap.parse_args()
    configure_logging()
    asyncio.run(_run(args.stale_after, args.grace))


if __name__ == "__main__":
    main()
