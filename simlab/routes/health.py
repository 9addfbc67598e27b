"""
Healthcheck endpoint for container orchestration.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from pymongo.errors import PyMongoError

from simlab.core.database import get_database

logger = logging.getLogger("simlab.api")

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health() -> dict[str, str | bool]:
    try:
        db = get_database()
        await db.command("ping")
        mongo_ok = True
    except PyMongoError as exc:
        logger.warning("Health check: mongo ping failed: %s", exc)
        mongo_ok = False

    return {
        "status": "ok" if mongo_ok else "degraded",
        "mongo": mongo_ok,
    }
