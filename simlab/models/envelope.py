"""
Error envelope with corr_id field.
"""

from __future__ import annotations

from pydantic import BaseModel

from simlab.core.corr_id import get_corr_id


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    corr_id: str

    @classmethod
    def from_error(cls, code: str, message: str) -> "ErrorEnvelope":
        return cls(error=ErrorDetail(code=code, message=message), corr_id=get_corr_id())
