"""
User persistence and password helpers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from passlib.context import CryptContext

from simlab.models.auth import RegisterRequest, UserPublic

pwd_context = CryptContext(schemes=["bcrypt_sha256", "bcrypt"], deprecated="auto")


def get_collection() -> AsyncIOMotorCollection:
    from simlab.core.database import get_collection as _get_collection

    return _get_collection("users")


async def ensure_indexes() -> None:
    col = get_collection()
    await col.create_index("username", unique=True)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hash_: str) -> bool:
    if not hash_:
        return False
    return pwd_context.verify(password, hash_)


def user_to_public(doc: Dict[str, Any]) -> UserPublic:
    return UserPublic(
        id=str(doc["_id"]),
        username=doc["username"],
        created_at=doc.get("created_at") or datetime.now(timezone.utc),
    )


async def create_user(payload: RegisterRequest) -> Dict[str, Any]:
    col = get_collection()
    doc = {
        "username": payload.username,
        "password_hash": hash_password(payload.password),
        "created_at": datetime.now(timezone.utc),
    }
    result = await col.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def find_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    col = get_collection()
    return await col.find_one({"username": username})


async def find_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    try:
        oid = ObjectId(user_id)
    except (InvalidId, TypeError):
        return None
    col = get_collection()
    return await col.find_one({"_id": oid})
