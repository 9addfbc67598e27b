"""
Common types shared across Pydantic models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import Field

ObjectIdStr = Annotated[str, Field(pattern=r"^[a-fA-F0-9]{24}$")]
UUIDStr = Annotated[str, Field(pattern=r"^[0-9a-fA-F-]{36}$")]
Username = Annotated[str, Field(pattern=r"^[A-Za-z0-9_.-]+$", min_length=3, max_length=64)]


def iso_utc(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")
