"""
Reconciliation sweep: re-enqueue orphaned Submitted jobs and recover jobs
stuck in Running after a worker died.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from simlab.models.jobs import DispatchMessage
from simlab.services.errors import Conflict, JobError, NotFound
from simlab.services.job_store import Clock, Job, JobStore, utcnow
from simlab.services.queue import JobQueue

logger = logging.getLogger("simlab.reconcile")

STALE_RUNNING_ERROR = "worker stopped responding"


@dataclass
class ReconcileReport:
    requeued: List[str] = field(default_factory=list)
    recovered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def touched(self) -> int:
        return len(self.requeued) + len(self.recovered) + len(self.failed)


class Reconciler:
    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        *,
        retry_limit: int = 3,
        running_stale_after_s: float = 900.0,
        submitted_grace_s: float = 120.0,
        batch_size: int = 100,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._queue = queue
        self.retry_limit = retry_limit
        self.running_stale_after = timedelta(seconds=running_stale_after_s)
        self.submitted_grace = timedelta(seconds=submitted_grace_s)
        self.batch_size = batch_size
        self._clock = clock

    async def sweep(self) -> ReconcileReport:
        report = ReconcileReport()
        now = self._clock()

        for job in await self._store.list_stale("Running", now - self.running_stale_after, self.batch_size):
            await self._recover_running(job, report)

        waiting = await self._store.list_stale("Submitted", now - self.submitted_grace, self.batch_size)
        # A message still in the queue will be delivered; only orphans need another.
        queued = await self._queue.queued_job_ids(job.id for job in waiting)
        for job in waiting:
            if job.id in report.recovered or job.id in queued:
                continue
            await self._publish(job)
            report.requeued.append(job.id)

        if report.touched:
            logger.info(
                "Sweep: %d requeued, %d recovered from Running, %d failed",
                len(report.requeued),
                len(report.recovered),
                len(report.failed),
            )
        return report

    async def _recover_running(self, job: Job, report: ReconcileReport) -> None:
        # A stale Running job counts as a failed attempt.
        attempts = job.attempts + 1
        target = "Failed" if attempts > self.retry_limit else "Submitted"
        try:
            await self._store.transition(job.id, "Running", target, attempts=attempts, error=STALE_RUNNING_ERROR)
        except (Conflict, NotFound) as exc:
            logger.info("Job %s moved on before recovery: %s", job.id, exc)
            return
        if target == "Failed":
            logger.warning("Job %s marked Failed after %d stale attempt(s)", job.id, attempts)
            report.failed.append(job.id)
            return
        await self._publish(job)
        report.recovered.append(job.id)

    async def _publish(self, job: Job) -> None:
        await self._queue.publish(DispatchMessage(job_id=job.id, parameters=job.parameters))
        await self._store.mark_dispatched(job.id)

    async def run_periodic(self, stop: asyncio.Event, interval_s: float) -> None:
        logger.info("Reconciler started (interval=%.0fs)", interval_s)
        while not stop.is_set():
            try:
                await self.sweep()
            except JobError as exc:
                logger.warning("Sweep aborted: %s", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                pass
        logger.info("Reconciler stopped")
