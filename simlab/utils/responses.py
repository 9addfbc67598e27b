"""
Response helpers that add `corr_id` fields and shape error envelopes.
"""

from __future__ import annotations

from typing import Any, Dict, NoReturn

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from simlab.core.corr_id import get_corr_id
from simlab.models.envelope import ErrorEnvelope


def with_corr_id(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Add `corr_id` to the payload, returning a new dict."""

    enriched = payload.copy()
    enriched["corr_id"] = get_corr_id()
    return enriched


def raise_http_error(code: str, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> NoReturn:
    """Raise an HTTPException with the expected ErrorEnvelope body."""

    envelope = ErrorEnvelope.from_error(code=code, message=message)
    raise HTTPException(status_code=status_code, detail=envelope.model_dump())


class UTF8JSONResponse(JSONResponse):
    """JSON response enforcing UTF-8 charset."""

    media_type = "application/json; charset=utf-8"
