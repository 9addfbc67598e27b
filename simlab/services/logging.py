"""
SystemLog persistence helpers for user-initiated job actions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from simlab.core.corr_id import get_corr_id
from simlab.core.database import get_collection

SystemLogLevel = Literal["info", "warn", "error"]


async def write_system_log(
    event: str,
    user_id: Optional[str] = None,
    job_ids: Optional[list[str]] = None,
    details: Optional[dict[str, Any]] = None,
    level: SystemLogLevel = "info",
) -> None:
    doc: dict[str, Any] = {
        "event": event,
        "user_id": user_id,
        "job_ids": job_ids or [],
        "details": details or {},
        "level": level,
        "corr_id": get_corr_id(),
        "timestamp": datetime.now(timezone.utc),
    }
    collection = get_collection("system_logs")
    await collection.insert_one(doc)
