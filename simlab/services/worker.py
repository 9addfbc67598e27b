"""
Queue consumer that drives each job through its lifecycle.

    Submitted -(claim)-> Running -(success)-> Done
                         Running -(failure)-> Submitted   (retry)
                         Running -(failure, retries exhausted)-> Failed

Every edge goes through `JobStore.transition`, so redelivered or duplicated
messages are harmless: only the delivery that wins the claim computes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Union

from pydantic import ValidationError

from simlab.core.corr_id import bind_corr_id
from simlab.models.jobs import DispatchMessage, SimulationParameters
from simlab.services.errors import ComputeFailure, Conflict, NotFound, StoreUnavailable
from simlab.services.job_store import Job, JobStore
from simlab.services.queue import Delivery, JobQueue, Outcome

logger = logging.getLogger("simlab.worker")

ComputeResult = Dict[str, Any]
Compute = Callable[[SimulationParameters], Union[ComputeResult, Awaitable[ComputeResult]]]


def _is_async(fn: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(getattr(fn, "__call__", None))


class Worker:
    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        compute: Compute,
        *,
        retry_limit: int = 3,
        compute_timeout_s: float = 300.0,
    ) -> None:
        if retry_limit < 0:
            raise ValueError("retry_limit must be >= 0")
        self._store = store
        self._queue = queue
        self._compute_fn = compute
        self.retry_limit = retry_limit
        self.compute_timeout_s = compute_timeout_s

    async def run(self, stop: asyncio.Event) -> None:
        logger.info("Worker started (retry_limit=%d, timeout=%.0fs)", self.retry_limit, self.compute_timeout_s)
        await self._queue.consume(self.handle, stop)
        logger.info("Worker stopped")

    async def handle(self, delivery: Delivery) -> Outcome:
        try:
            message = DispatchMessage.model_validate_json(delivery.body)
        except ValidationError as exc:
            logger.error("Dropping malformed message %s: %s", delivery.delivery_tag, exc)
            return Outcome.nacked(requeue=False)
        with bind_corr_id(message.job_id):
            return await self._process(message, delivery)

    async def _process(self, message: DispatchMessage, delivery: Delivery) -> Outcome:
        job_id = message.job_id
        try:
            job = await self._store.transition(job_id, "Submitted", "Running")
        except Conflict as exc:
            logger.info("Discarding delivery for job %s: %s", job_id, exc)
            return Outcome.acked()
        except NotFound:
            logger.info("Discarding delivery for deleted job %s", job_id)
            return Outcome.acked()
        except StoreUnavailable as exc:
            logger.warning("Could not claim job %s, requeueing: %s", job_id, exc)
            return Outcome.nacked(requeue=True)

        logger.info(
            "Job %s claimed (attempt %d, redelivered=%s)", job_id, job.attempts + 1, delivery.redelivered
        )
        try:
            result = await self._compute(message.parameters)
        except ComputeFailure as exc:
            return await self._record_failure(job, str(exc))
        except asyncio.CancelledError:
            await self._release(job_id)
            raise

        try:
            await self._store.transition(job_id, "Running", "Done", result)
        except StoreUnavailable as exc:
            # Not a job failure. The redelivery will see Running; the stale sweep recovers it.
            logger.error("Could not record result for job %s: %s", job_id, exc)
            return Outcome.nacked(requeue=True)
        except (Conflict, NotFound) as exc:
            logger.info("Result for job %s discarded: %s", job_id, exc)
            return Outcome.acked()
        logger.info("Job %s done", job_id)
        return Outcome.acked()

    async def _compute(self, parameters: SimulationParameters) -> ComputeResult:
        fn = self._compute_fn
        if _is_async(fn):
            pending = fn(parameters)
        else:
            pending = asyncio.to_thread(fn, parameters)
        try:
            result = await asyncio.wait_for(pending, timeout=self.compute_timeout_s)  # type: ignore[arg-type]
        except asyncio.TimeoutError as exc:
            raise ComputeFailure(f"compute exceeded {self.compute_timeout_s:g}s") from exc
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ComputeFailure(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(result, dict) or not result:
            raise ComputeFailure("compute returned an empty result")
        return result

    async def _record_failure(self, job: Job, error: str) -> Outcome:
        attempts = job.attempts + 1
        target = "Failed" if attempts > self.retry_limit else "Submitted"
        try:
            await self._store.transition(job.id, "Running", target, attempts=attempts, error=error)
        except StoreUnavailable as exc:
            logger.error("Could not record failure for job %s: %s", job.id, exc)
            return Outcome.nacked(requeue=True)
        except (Conflict, NotFound) as exc:
            logger.info("Failure for job %s discarded: %s", job.id, exc)
            return Outcome.acked()

        if target == "Failed":
            logger.error("Job %s failed after %d attempt(s): %s", job.id, attempts, error)
            return Outcome.nacked(requeue=False)
        logger.warning("Job %s attempt %d failed, retrying: %s", job.id, attempts, error)
        return Outcome.nacked(requeue=True)

    async def _release(self, job_id: str) -> None:
        """Hand a job interrupted by shutdown back to Submitted without charging an attempt."""

        try:
            await self._store.transition(job_id, "Running", "Submitted")
            logger.info("Job %s released on shutdown", job_id)
        except (Conflict, NotFound, StoreUnavailable) as exc:
            logger.warning("Job %s left Running on shutdown: %s", job_id, exc)
