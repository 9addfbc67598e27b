"""
Process wiring: build the job store, queue, dispatcher, worker and reconciler
from settings, and create indexes on startup.
"""

from __future__ import annotations

from dataclasses import dataclass

from simlab.core.config import Settings
from simlab.core.database import get_collection
from simlab.services.dispatcher import Dispatcher
from simlab.services.job_store import MongoJobStore
from simlab.services.queue import MongoQueue
from simlab.services.reconcile import Reconciler
from simlab.services.retry import RetryPolicy
from simlab.services.simulation import SimulationSink
from simlab.services.users import ensure_indexes as ensure_user_indexes
from simlab.services.worker import Worker


@dataclass
class Services:
    store: MongoJobStore
    queue: MongoQueue
    dispatcher: Dispatcher


def build_services(settings: Settings) -> Services:
    retry = RetryPolicy(
        attempts=settings.infra_retry_attempts,
        backoff_s=settings.infra_retry_backoff_ms / 1000,
    )
    store = MongoJobStore(get_collection("jobs"), retry=retry)
    queue = MongoQueue(
        get_collection(settings.queue_name),
        lease_s=settings.queue_lease_s,
        poll_interval_s=settings.queue_poll_interval_ms / 1000,
        requeue_delay_s=settings.queue_requeue_delay_ms / 1000,
        retry=retry,
    )
    dispatcher = Dispatcher(store, queue, max_batch_size=settings.max_batch_size)
    return Services(store=store, queue=queue, dispatcher=dispatcher)


def build_worker(services: Services, settings: Settings) -> Worker:
    return Worker(
        services.store,
        services.queue,
        SimulationSink(settings.seconds_per_duration_unit),
        retry_limit=settings.worker_retry_limit,
        compute_timeout_s=settings.compute_timeout_s,
    )


def build_reconciler(services: Services, settings: Settings) -> Reconciler:
    return Reconciler(
        services.store,
        services.queue,
        retry_limit=settings.worker_retry_limit,
        running_stale_after_s=settings.running_stale_after_s,
        submitted_grace_s=settings.submitted_grace_s,
    )


async def run_startup(services: Services) -> None:
    await ensure_user_indexes()
    await services.store.ensure_indexes()
    await services.queue.ensure_indexes()
