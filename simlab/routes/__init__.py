"""API router registration."""

from fastapi import FastAPI

from .auth import router as auth_router
from .health import router as health_router
from .jobs import router as jobs_router
from .simulations import router as simulations_router


def register_routes(app: FastAPI) -> None:
    app.include_router(auth_router, prefix="/api")
    app.include_router(jobs_router, prefix="/api")
    app.include_router(simulations_router, prefix="/api")
    app.include_router(health_router, prefix="/api")
