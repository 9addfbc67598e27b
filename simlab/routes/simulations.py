"""
Simulation template import: validate an uploaded JSON file and return the
normalized parameters. Nothing is created here; the dashboard submits the
returned template through `/jobs/batch`.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import ValidationError

from simlab.core.config import settings
from simlab.dependencies.auth import current_owner_id
from simlab.models.jobs import ImportValidationResponse, ImportedSimulation
from simlab.utils.responses import raise_http_error, with_corr_id

logger = logging.getLogger("simlab.api")

router = APIRouter(prefix="/simulations", tags=["Simulations"])


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


@router.post("/import", response_model=ImportValidationResponse)
async def import_simulation(
    file: UploadFile = File(...),
    count: int = Form(...),
    owner_id: str = Depends(current_owner_id),
) -> ImportValidationResponse:
    if not 1 <= count <= settings.max_batch_size:
        raise_http_error("INVALID_ARGUMENT", f"Count must be between 1 and {settings.max_batch_size}")

    filename = file.filename or ""
    if file.content_type != "application/json" and not filename.endswith(".json"):
        raise_http_error("INVALID_FILE", "Only JSON files are allowed")

    raw = await file.read(settings.max_import_bytes + 1)
    if len(raw) > settings.max_import_bytes:
        raise_http_error("FILE_TOO_LARGE", f"File size too large (max {settings.max_import_bytes} bytes)")

    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise_http_error("INVALID_JSON", "Invalid JSON format")

    try:
        imported = ImportedSimulation.model_validate(data)
    except ValidationError as exc:
        raise_http_error("VALIDATION_ERROR", _format_errors(exc))

    logger.info("Validated import of %d simulation(s) for owner %s", count, owner_id)
    message = f"Successfully validated simulation data for {count} simulation{'s' if count > 1 else ''}"
    return ImportValidationResponse(
        **with_corr_id({"imported": count, "simulation_data": imported, "message": message})
    )
