"""
Durable job records and the atomic status transition that guards them.

`transition` is the only way a job's status changes. It is a single
conditional update (`WHERE id = ? AND status = ?`), so any number of workers
may race on the same job and exactly one of them wins each edge.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, TypeVar
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError

from simlab.models.jobs import JobPublic, JobStatus, SimulationParameters
from simlab.services.errors import Conflict, InvalidArgument, NotFound, StoreUnavailable
from simlab.services.retry import RetryPolicy, call_with_retries, insert_once

logger = logging.getLogger("simlab.store")

T = TypeVar("T")
Clock = Callable[[], datetime]

ALLOWED_TRANSITIONS: Dict[str, set[str]] = {
    "Submitted": {"Running"},
    "Running": {"Done", "Submitted", "Failed"},
    "Done": set(),
    "Failed": set(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Job:
    id: str
    owner_id: str
    parameters: SimulationParameters
    status: JobStatus
    result: Optional[dict[str, Any]]
    attempts: int
    last_error: Optional[str]
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None

    def to_public(self, include_result: bool = True) -> JobPublic:
        return JobPublic(
            id=self.id,
            owner_id=self.owner_id,
            status=self.status,
            parameters=self.parameters,
            result=self.result if include_result else None,
            attempts=self.attempts,
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class JobStore(Protocol):
    async def create(self, owner_id: str, parameters: SimulationParameters) -> Job: ...

    async def get(self, job_id: str, owner_id: str) -> Job: ...

    async def list(self, owner_id: str) -> List[Job]: ...

    async def transition(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        *,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job: ...

    async def delete(self, job_id: str, owner_id: str) -> None: ...

    async def mark_dispatched(self, job_id: str) -> None: ...

    async def list_stale(self, status: JobStatus, updated_before: datetime, limit: int = 100) -> List[Job]: ...


def _new_doc(owner_id: str, parameters: SimulationParameters, now: datetime) -> Dict[str, Any]:
    return {
        "_id": str(uuid4()),
        "owner_id": owner_id,
        "parameters": parameters.model_dump(),
        "status": "Submitted",
        "result": None,
        "attempts": 0,
        "last_error": None,
        "created_at": now,
        "updated_at": now,
        "started_at": None,
        "finished_at": None,
        "dispatched_at": None,
        "last_transition": None,
    }


def _doc_to_job(doc: Dict[str, Any]) -> Job:
    return Job(
        id=doc["_id"],
        owner_id=doc["owner_id"],
        parameters=SimulationParameters.model_validate(doc["parameters"]),
        status=doc["status"],
        result=copy.deepcopy(doc.get("result")),
        attempts=int(doc.get("attempts", 0)),
        last_error=doc.get("last_error"),
        created_at=doc["created_at"],
        updated_at=doc.get("updated_at", doc["created_at"]),
        started_at=doc.get("started_at"),
        finished_at=doc.get("finished_at"),
        dispatched_at=doc.get("dispatched_at"),
    )


def _transition_fields(
    from_status: str,
    to_status: str,
    result: Optional[dict[str, Any]],
    attempts: Optional[int],
    error: Optional[str],
    now: datetime,
) -> Dict[str, Any]:
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
        raise InvalidArgument(f"transition {from_status} -> {to_status} is not allowed")
    if to_status == "Done" and not result:
        raise InvalidArgument("a Done transition requires a result")
    if to_status != "Done" and result is not None:
        raise InvalidArgument(f"a {to_status} transition must not carry a result")
    if attempts is not None and attempts < 0:
        raise InvalidArgument("attempts must be >= 0")

    fields: Dict[str, Any] = {"status": to_status, "result": result, "updated_at": now}
    if to_status == "Running":
        fields["started_at"] = now
        fields["finished_at"] = None
    elif to_status in ("Done", "Failed"):
        fields["finished_at"] = now
    else:
        # Back in the queue: the nacked delivery is the live dispatch.
        fields["dispatched_at"] = now
    if attempts is not None:
        fields["attempts"] = attempts
    if error is not None:
        fields["last_error"] = error
    return fields


def _is_stale(doc: Dict[str, Any], status: str, before: datetime) -> bool:
    if doc["status"] != status:
        return False
    if status == "Submitted":
        return (doc.get("dispatched_at") or doc["created_at"]) < before
    return doc["updated_at"] < before


class MongoJobStore:
    """JobStore over a Motor collection; `_id` is the job id."""

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        retry: Optional[RetryPolicy] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._col = collection
        self._retry = retry or RetryPolicy()
        self._clock = clock

    async def _call(self, what: str, op: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call_with_retries(
                op,
                policy=self._retry,
                retry_on=(ConnectionFailure,),
                raise_as=StoreUnavailable,
                what=what,
            )
        except PyMongoError as exc:
            raise StoreUnavailable(f"{what}: {exc}") from exc

    async def ensure_indexes(self) -> None:
        await self._call(
            "jobs.index.owner",
            lambda: self._col.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)]),
        )
        await self._call(
            "jobs.index.status",
            lambda: self._col.create_index([("status", ASCENDING), ("updated_at", ASCENDING)]),
        )

    async def create(self, owner_id: str, parameters: SimulationParameters) -> Job:
        doc = _new_doc(owner_id, parameters, self._clock())
        await self._call("jobs.create", insert_once(self._col, doc, "jobs.create"))
        return _doc_to_job(doc)

    async def get(self, job_id: str, owner_id: str) -> Job:
        doc = await self._call("jobs.get", lambda: self._col.find_one({"_id": job_id, "owner_id": owner_id}))
        if not doc:
            raise NotFound(f"Job '{job_id}' not found")
        return _doc_to_job(doc)

    async def list(self, owner_id: str) -> List[Job]:
        async def _fetch() -> List[Dict[str, Any]]:
            cursor = self._col.find({"owner_id": owner_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            return [doc async for doc in cursor]

        docs = await self._call("jobs.list", _fetch)
        return [_doc_to_job(doc) for doc in docs]

    async def transition(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        *,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        fields = _transition_fields(from_status, to_status, result, attempts, error, self._clock())
        # Lets a retried update recognize its own earlier write.
        token = uuid4().hex
        fields["last_transition"] = token

        doc = await self._call(
            "jobs.transition",
            lambda: self._col.find_one_and_update(
                {"_id": job_id, "status": from_status},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            ),
        )
        if doc:
            return _doc_to_job(doc)

        current = await self._call("jobs.transition.lookup", lambda: self._col.find_one({"_id": job_id}))
        if not current:
            raise NotFound(f"Job '{job_id}' not found")
        if current.get("last_transition") == token:
            return _doc_to_job(current)
        raise Conflict(f"Job '{job_id}' is {current['status']}, expected {from_status}")

    async def delete(self, job_id: str, owner_id: str) -> None:
        res = await self._call("jobs.delete", lambda: self._col.delete_one({"_id": job_id, "owner_id": owner_id}))
        if res.deleted_count == 0:
            raise NotFound(f"Job '{job_id}' not found")

    async def mark_dispatched(self, job_id: str) -> None:
        now = self._clock()
        await self._call(
            "jobs.mark_dispatched",
            lambda: self._col.update_one({"_id": job_id}, {"$set": {"dispatched_at": now}}),
        )

    async def list_stale(self, status: JobStatus, updated_before: datetime, limit: int = 100) -> List[Job]:
        if status == "Submitted":
            query: Dict[str, Any] = {
                "status": status,
                "$or": [
                    {"dispatched_at": {"$lt": updated_before}},
                    {"dispatched_at": None, "created_at": {"$lt": updated_before}},
                ],
            }
        else:
            query = {"status": status, "updated_at": {"$lt": updated_before}}

        async def _fetch() -> List[Dict[str, Any]]:
            cursor = self._col.find(query).sort("updated_at", ASCENDING).limit(limit)
            return [doc async for doc in cursor]

        docs = await self._call("jobs.list_stale", _fetch)
        return [_doc_to_job(doc) for doc in docs]


class InMemoryJobStore:
    """Single-process JobStore.

    No await happens between the status check and the write, so transitions
    are atomic with respect to other coroutines on the same loop.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._seq: Dict[str, int] = {}
        self._clock = clock

    async def create(self, owner_id: str, parameters: SimulationParameters) -> Job:
        doc = _new_doc(owner_id, parameters, self._clock())
        self._docs[doc["_id"]] = doc
        self._seq[doc["_id"]] = len(self._seq)
        return _doc_to_job(doc)

    async def get(self, job_id: str, owner_id: str) -> Job:
        doc = self._docs.get(job_id)
        if not doc or doc["owner_id"] != owner_id:
            raise NotFound(f"Job '{job_id}' not found")
        return _doc_to_job(doc)

    async def list(self, owner_id: str) -> List[Job]:
        docs = [doc for doc in self._docs.values() if doc["owner_id"] == owner_id]
        docs.sort(key=lambda d: (d["created_at"], self._seq[d["_id"]]), reverse=True)
        return [_doc_to_job(doc) for doc in docs]

    async def transition(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        result: Optional[dict[str, Any]] = None,
        *,
        attempts: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Job:
        fields = _transition_fields(from_status, to_status, copy.deepcopy(result), attempts, error, self._clock())
        doc = self._docs.get(job_id)
        if not doc:
            raise NotFound(f"Job '{job_id}' not found")
        if doc["status"] != from_status:
            raise Conflict(f"Job '{job_id}' is {doc['status']}, expected {from_status}")
        doc.update(fields)
        return _doc_to_job(doc)

    async def delete(self, job_id: str, owner_id: str) -> None:
        doc = self._docs.get(job_id)
        if not doc or doc["owner_id"] != owner_id:
            raise NotFound(f"Job '{job_id}' not found")
        del self._docs[job_id]

    async def mark_dispatched(self, job_id: str) -> None:
        doc = self._docs.get(job_id)
        if doc:
            doc["dispatched_at"] = self._clock()

    async def list_stale(self, status: JobStatus, updated_before: datetime, limit: int = 100) -> List[Job]:
        docs = [doc for doc in self._docs.values() if _is_stale(doc, status, updated_before)]
        docs.sort(key=lambda d: d["updated_at"])
        return [_doc_to_job(doc) for doc in docs[:limit]]
