"""
Auth and user models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, Field, ConfigDict

from .common import ObjectIdStr, Username, iso_utc


class UserPublic(BaseModel):
    model_config = ConfigDict(json_encoders={datetime: iso_utc})

    id: ObjectIdStr
    username: Username
    created_at: datetime


class RegisterRequest(BaseModel):
    username: Username
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AuthResponse(BaseModel):
    token: str
    user: UserPublic
    corr_id: str


class VerifyResponse(BaseModel):
    valid: bool
    claims: Dict[str, Any]
    corr_id: str
