"""
JWT helpers and FastAPI dependencies for auth.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel

from simlab.core.config import settings
from simlab.services.users import find_user_by_id, find_user_by_username, verify_password
from simlab.utils.responses import raise_http_error

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


class TokenPayload(BaseModel):
    sub: str
    username: str
    exp: datetime


def create_access_token(user: Dict[str, Any], expires_in_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = expires_in_minutes if expires_in_minutes is not None else settings.jwt_expires_minutes
    payload = {
        "sub": str(user["_id"]),
        "username": user["username"],
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_access_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
        return TokenPayload(
            sub=payload["sub"],
            username=payload["username"],
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (jwt.PyJWTError, KeyError):
        raise_http_error("INVALID_TOKEN", "Invalid or expired token", status.HTTP_401_UNAUTHORIZED)


async def authenticate_user(username: str, password: str) -> Dict[str, Any]:
    user = await find_user_by_username(username)
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise_http_error("INVALID_CREDENTIALS", "Invalid credentials", status.HTTP_401_UNAUTHORIZED)
    return user


async def get_current_user(token: str = Depends(oauth2_scheme)) -> Dict[str, Any]:
    token_data = decode_access_token(token)
    user = await find_user_by_id(token_data.sub)
    if not user:
        raise_http_error("USER_NOT_FOUND", "User no longer exists", status.HTTP_401_UNAUTHORIZED)
    return user


def current_owner_id(user: Dict[str, Any] = Depends(get_current_user)) -> str:
    return str(user["_id"])
