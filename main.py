"""
FastAPI application entrypoint for the SimLab backend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from simlab.core.config import settings
from simlab.core.corr_id import CorrIdMiddleware
from simlab.core.database import close_client
from simlab.core.logs import configure_logging
from simlab.routes import register_routes
from simlab.services.bootstrap import Services, build_reconciler, build_services, build_worker, run_startup
from simlab.services.dispatcher import Dispatcher
from simlab.services.job_store import JobStore
from simlab.utils.error_handlers import install_error_handlers
from simlab.utils.responses import UTF8JSONResponse

configure_logging()
logger = logging.getLogger("simlab.api")


def create_app(job_store: Optional[JobStore] = None, dispatcher: Optional[Dispatcher] = None) -> FastAPI:
    """Build the API. Passing a store and dispatcher skips Mongo wiring (tests, embedding)."""

    app = FastAPI(
        title="SimLab API",
        version="0.2.0",
        description="SimLab agent-based tumour simulation jobs",
        openapi_url="/api/openapi.json",
        default_response_class=UTF8JSONResponse,
    )

    app.add_middleware(CorrIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)
    register_routes(app)

    services: Optional[Services] = None
    if job_store is None or dispatcher is None:
        services = build_services(settings)
        job_store, dispatcher = services.store, services.dispatcher
    app.state.job_store = job_store
    app.state.dispatcher = dispatcher

    stop = asyncio.Event()
    background: List[asyncio.Task] = []

    @app.on_event("startup")
    async def _startup() -> None:
        logger.info("SimLab backend starting")
        if services is None:
            return
        await run_startup(services)
        if settings.run_worker_in_process:
            worker = build_worker(services, settings)
            reconciler = build_reconciler(services, settings)
            background.append(asyncio.create_task(worker.run(stop)))
            background.append(asyncio.create_task(reconciler.run_periodic(stop, settings.reconcile_interval_s)))
            logger.info("In-process worker and reconciler started")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        logger.info("SimLab backend shutting down")
        stop.set()
        for task in background:
            task.cancel()
        await asyncio.gather(*background, return_exceptions=True)
        if services is not None:
            close_client()

    return app


app = create_app()
