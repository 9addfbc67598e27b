"""
Turns one "create simulations" request into N independent jobs and N queue
messages.
"""

from __future__ import annotations

import logging
from typing import List

from simlab.models.jobs import DispatchMessage, SimulationParameters
from simlab.services.errors import InvalidArgument
from simlab.services.job_store import Job, JobStore
from simlab.services.queue import JobQueue

logger = logging.getLogger("simlab.dispatcher")


class Dispatcher:
    def __init__(self, store: JobStore, queue: JobQueue, max_batch_size: int = 1000) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._store = store
        self._queue = queue
        self.max_batch_size = max_batch_size

    async def submit_batch(self, owner_id: str, template: SimulationParameters, count: int) -> List[Job]:
        """Create `count` jobs from `template` and enqueue one message each.

        Creation and enqueue are sequential steps, not a transaction. The first
        infrastructure failure is raised; a job whose publish failed stays
        Submitted and is re-enqueued by the reconciliation sweep.
        """

        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidArgument("count must be an integer")
        if not 1 <= count <= self.max_batch_size:
            raise InvalidArgument(f"count must be between 1 and {self.max_batch_size}")

        jobs: List[Job] = []
        for _ in range(count):
            parameters = template.model_copy(deep=True)
            job = await self._store.create(owner_id, parameters)
            jobs.append(job)
            try:
                await self._queue.publish(DispatchMessage(job_id=job.id, parameters=job.parameters))
            except Exception:
                logger.error("Job %s created but not enqueued; left for reconciliation", job.id)
                raise
            await self._store.mark_dispatched(job.id)
        logger.info("Submitted %d job(s) for owner %s", len(jobs), owner_id)
        return jobs

    async def submit(self, owner_id: str, parameters: SimulationParameters) -> Job:
        jobs = await self.submit_batch(owner_id, parameters, 1)
        return jobs[0]
