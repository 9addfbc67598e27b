"""
Centralised HTTP error handling that emits the canonical ErrorEnvelope.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from simlab.models.envelope import ErrorEnvelope
from simlab.services.errors import (
    Conflict,
    InvalidArgument,
    JobError,
    NotFound,
    QueueUnavailable,
    StoreUnavailable,
)

logger = logging.getLogger("simlab.api")

JOB_ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    Conflict: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    QueueUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def job_error_status(exc: JobError) -> int:
    for cls, code in JOB_ERROR_STATUS.items():
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        detail = exc.detail
        if isinstance(detail, dict) and "error" in detail and "corr_id" in detail:
            return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)
        envelope = ErrorEnvelope.from_error(
            code="HTTP_ERROR",
            message=str(detail),
        )
        return JSONResponse(status_code=exc.status_code, content=envelope.model_dump(), headers=exc.headers)

    @app.exception_handler(JobError)
    async def _job_error_handler(request: Request, exc: JobError) -> JSONResponse:
        status_code = job_error_status(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        envelope = ErrorEnvelope.from_error(code=exc.code, message=str(exc))
        return JSONResponse(status_code=status_code, content=envelope.model_dump())

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        message = "; ".join(err.get("msg", "validation error") for err in errors)
        envelope = ErrorEnvelope.from_error(code="VALIDATION_ERROR", message=message)
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=envelope.model_dump())
