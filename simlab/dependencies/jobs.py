"""
FastAPI dependencies exposing the job store and dispatcher owned by the app.
"""

from __future__ import annotations

from fastapi import Request

from simlab.services.dispatcher import Dispatcher
from simlab.services.job_store import JobStore


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher
