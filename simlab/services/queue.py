"""
At-least-once dispatch queue.

Consumers take one message at a time and answer with an `Outcome`: ack removes
the message, nack either makes it available again or drops it. A message that
is never answered (consumer crash) comes back once its lease expires.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, Optional, Protocol, Set
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError

from simlab.models.jobs import DispatchMessage
from simlab.services.errors import QueueUnavailable
from simlab.services.job_store import Clock, utcnow
from simlab.services.retry import RetryPolicy, call_with_retries, insert_once

logger = logging.getLogger("simlab.queue")


@dataclass(frozen=True)
class Delivery:
    body: str
    delivery_tag: str
    delivery_count: int = 1

    @property
    def redelivered(self) -> bool:
        return self.delivery_count > 1


@dataclass(frozen=True)
class Outcome:
    ack: bool
    requeue: bool = False

    @classmethod
    def acked(cls) -> "Outcome":
        return cls(ack=True)

    @classmethod
    def nacked(cls, requeue: bool) -> "Outcome":
        return cls(ack=False, requeue=requeue)


Handler = Callable[[Delivery], Awaitable[Outcome]]


class JobQueue(Protocol):
    async def publish(self, message: DispatchMessage) -> None: ...

    async def consume(self, handler: Handler, stop: asyncio.Event) -> None: ...

    async def queued_job_ids(self, job_ids: Iterable[str]) -> Set[str]: ...


def encode(message: DispatchMessage) -> str:
    return message.model_dump_json(by_alias=True)


async def _run_handler(handler: Handler, delivery: Delivery) -> Outcome:
    try:
        return await handler(delivery)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Handler failed for delivery %s; requeueing", delivery.delivery_tag)
        return Outcome.nacked(requeue=True)


async def _wait(stop: asyncio.Event, timeout: float) -> None:
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


class MongoQueue:
    """Durable lease-based queue stored in a Mongo collection.

    Documents: `{_id, body, available_at, leased_until, lease_token,
    delivery_count, created_at}`. Claiming the oldest available message is a
    single `find_one_and_update`, so concurrent consumers never share a lease.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        *,
        lease_s: float = 600.0,
        poll_interval_s: float = 0.5,
        requeue_delay_s: float = 1.0,
        retry: Optional[RetryPolicy] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._col = collection
        self._lease = timedelta(seconds=lease_s)
        self._poll_interval_s = poll_interval_s
        self._requeue_delay = timedelta(seconds=requeue_delay_s)
        self._retry = retry or RetryPolicy()
        self._clock = clock

    async def _call(self, what: str, op: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await call_with_retries(
                op,
                policy=self._retry,
                retry_on=(ConnectionFailure,),
                raise_as=QueueUnavailable,
                what=what,
            )
        except PyMongoError as exc:
            raise QueueUnavailable(f"{what}: {exc}") from exc

    async def ensure_indexes(self) -> None:
        await self._call(
            "queue.index",
            lambda: self._col.create_index([("available_at", ASCENDING), ("leased_until", ASCENDING)]),
        )
        await self._call("queue.index.job", lambda: self._col.create_index("job_id"))

    async def publish(self, message: DispatchMessage) -> None:
        now = self._clock()
        doc = {
            "_id": uuid4().hex,
            "job_id": message.job_id,
            "body": encode(message),
            "available_at": now,
            "leased_until": None,
            "lease_token": None,
            "delivery_count": 0,
            "created_at": now,
        }
        await self._call("queue.publish", insert_once(self._col, doc, "queue.publish"))

    async def queued_job_ids(self, job_ids: Iterable[str]) -> Set[str]:
        """Jobs that still have a message here, available or leased."""

        ids = list(job_ids)
        if not ids:
            return set()
        found = await self._call("queue.queued", lambda: self._col.distinct("job_id", {"job_id": {"$in": ids}}))
        return set(found)

    async def _claim(self) -> Optional[Dict[str, Any]]:
        now = self._clock()
        return await self._call(
            "queue.claim",
            lambda: self._col.find_one_and_update(
                {
                    "available_at": {"$lte": now},
                    "$or": [{"leased_until": None}, {"leased_until": {"$lte": now}}],
                },
                {
                    "$set": {"leased_until": now + self._lease, "lease_token": uuid4().hex},
                    "$inc": {"delivery_count": 1},
                },
                sort=[("available_at", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            ),
        )

    async def _settle(self, doc: Dict[str, Any], outcome: Outcome) -> None:
        owned = {"_id": doc["_id"], "lease_token": doc["lease_token"]}
        if outcome.ack or not outcome.requeue:
            res = await self._call("queue.remove", lambda: self._col.delete_one(owned))
            settled = res.deleted_count
        else:
            available_at = self._clock() + self._requeue_delay
            res = await self._call(
                "queue.requeue",
                lambda: self._col.update_one(
                    owned,
                    {"$set": {"leased_until": None, "lease_token": None, "available_at": available_at}},
                ),
            )
            settled = res.matched_count
        if not settled:
            logger.warning("Lease on message %s expired before it was settled", doc["_id"])

    async def receive_one(self, handler: Handler) -> bool:
        """Claim, handle and settle one message; False when nothing is available."""

        doc = await self._claim()
        if not doc:
            return False
        delivery = Delivery(body=doc["body"], delivery_tag=doc["_id"], delivery_count=int(doc["delivery_count"]))
        outcome = await _run_handler(handler, delivery)
        await self._settle(doc, outcome)
        return True

    async def consume(self, handler: Handler, stop: asyncio.Event) -> None:
        logger.info("Consuming from %s", self._col.name)
        while not stop.is_set():
            try:
                got = await self.receive_one(handler)
            except QueueUnavailable as exc:
                # Reconnect-and-resume: the driver reconnects on the next call.
                logger.warning("Queue unavailable, backing off: %s", exc)
                await _wait(stop, self._retry.max_backoff_s)
                continue
            if not got:
                await _wait(stop, self._poll_interval_s)
        logger.info("Stopped consuming from %s", self._col.name)


class InMemoryQueue:
    """Process-local queue with the same contract, for tests and embedded runs."""

    def __init__(self, poll_interval_s: float = 0.05) -> None:
        self._pending: Deque[Delivery] = deque()
        self._poll_interval_s = poll_interval_s
        self.acked = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def publish(self, message: DispatchMessage) -> None:
        self.publish_raw(encode(message))

    def publish_raw(self, body: str) -> None:
        self._pending.append(Delivery(body=body, delivery_tag=uuid4().hex))

    async def queued_job_ids(self, job_ids: Iterable[str]) -> Set[str]:
        wanted = set(job_ids)
        queued = set()
        for delivery in self._pending:
            try:
                job_id = DispatchMessage.model_validate_json(delivery.body).job_id
            except ValidationError:
                continue
            if job_id in wanted:
                queued.add(job_id)
        return queued

    async def receive_one(self, handler: Handler) -> bool:
        if not self._pending:
            return False
        delivery = self._pending.popleft()
        outcome = await _run_handler(handler, delivery)
        if outcome.ack:
            self.acked += 1
        elif outcome.requeue:
            self._pending.append(
                Delivery(
                    body=delivery.body,
                    delivery_tag=delivery.delivery_tag,
                    delivery_count=delivery.delivery_count + 1,
                )
            )
        else:
            self.dropped += 1
        return True

    async def drain(self, handler: Handler, max_deliveries: int = 10_000) -> int:
        """Deliver until the queue is empty; returns the number of deliveries."""

        count = 0
        while count < max_deliveries and await self.receive_one(handler):
            count += 1
        return count

    async def consume(self, handler: Handler, stop: asyncio.Event) -> None:
        while not stop.is_set():
            if not await self.receive_one(handler):
                await _wait(stop, self._poll_interval_s)
