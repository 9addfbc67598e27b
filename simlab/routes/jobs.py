"""
Simulation job endpoints: batch submission, listing, deletion and results.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, status

from simlab.dependencies.auth import current_owner_id
from simlab.dependencies.jobs import get_dispatcher, get_job_store
from simlab.models.jobs import (
    BatchCreateRequest,
    JobDeletedResponse,
    JobResponse,
    JobResultResponse,
    JobsListResponse,
    SimulationParameters,
)
from simlab.services.dispatcher import Dispatcher
from simlab.services.job_store import JobStore
from simlab.services.logging import write_system_log
from simlab.utils.responses import raise_http_error, with_corr_id

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post("/batch", response_model=JobsListResponse, status_code=status.HTTP_201_CREATED)
async def create_batch(
    payload: BatchCreateRequest,
    owner_id: str = Depends(current_owner_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> JobsListResponse:
    jobs = await dispatcher.submit_batch(owner_id, payload.template, payload.count)
    await write_system_log(
        event="jobs.batch.create",
        user_id=owner_id,
        job_ids=[job.id for job in jobs],
        details={"count": payload.count, "title": payload.template.title},
    )
    return JobsListResponse(**with_corr_id({"jobs": [job.to_public() for job in jobs]}))


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    payload: SimulationParameters,
    owner_id: str = Depends(current_owner_id),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> JobResponse:
    job = await dispatcher.submit(owner_id, payload)
    await write_system_log(event="jobs.create", user_id=owner_id, job_ids=[job.id])
    return JobResponse(**with_corr_id({"job": job.to_public()}))


@router.get("", response_model=JobsListResponse)
async def list_jobs(
    owner_id: str = Depends(current_owner_id),
    store: JobStore = Depends(get_job_store),
) -> JobsListResponse:
    jobs = await store.list(owner_id)
    return JobsListResponse(**with_corr_id({"jobs": [job.to_public(include_result=False) for job in jobs]}))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str = Path(...),
    owner_id: str = Depends(current_owner_id),
    store: JobStore = Depends(get_job_store),
) -> JobResponse:
    job = await store.get(job_id, owner_id)
    return JobResponse(**with_corr_id({"job": job.to_public()}))


@router.delete("/{job_id}", response_model=JobDeletedResponse)
async def delete_job(
    job_id: str = Path(...),
    owner_id: str = Depends(current_owner_id),
    store: JobStore = Depends(get_job_store),
) -> JobDeletedResponse:
    await store.delete(job_id, owner_id)
    await write_system_log(event="jobs.delete", user_id=owner_id, job_ids=[job_id])
    return JobDeletedResponse(**with_corr_id({"job_id": job_id, "deleted": True}))


@router.get("/{job_id}/result", response_model=JobResultResponse)
async def job_result(
    job_id: str = Path(...),
    owner_id: str = Depends(current_owner_id),
    store: JobStore = Depends(get_job_store),
) -> JobResultResponse:
    job = await store.get(job_id, owner_id)
    if job.status != "Done" or not job.result:
        raise_http_error("JOB_NOT_DONE", f"Job '{job_id}' is {job.status}", status.HTTP_400_BAD_REQUEST)
    return JobResultResponse(**with_corr_id({"job_id": job.id, "result": job.result}))
