"""
Auth routes: register, login, verify and me.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from pymongo.errors import DuplicateKeyError

from simlab.dependencies.auth import (
    authenticate_user,
    create_access_token,
    decode_access_token,
    get_current_user,
    oauth2_scheme,
)
from simlab.models.auth import AuthResponse, LoginRequest, RegisterRequest, UserPublic, VerifyResponse
from simlab.services.users import create_user, user_to_public
from simlab.utils.responses import raise_http_error, with_corr_id

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest) -> AuthResponse:
    try:
        doc = await create_user(payload)
    except DuplicateKeyError:
        raise_http_error("USERNAME_EXISTS", "Username already exists", status.HTTP_400_BAD_REQUEST)
    token = create_access_token(doc)
    return AuthResponse(**with_corr_id({"token": token, "user": user_to_public(doc)}))


@router.post("/login", response_model=AuthResponse)
async def login(payload: LoginRequest) -> AuthResponse:
    user = await authenticate_user(payload.username, payload.password)
    token = create_access_token(user)
    return AuthResponse(**with_corr_id({"token": token, "user": user_to_public(user)}))


@router.get("/verify", response_model=VerifyResponse)
async def verify(token: str = Depends(oauth2_scheme)) -> VerifyResponse:
    claims = decode_access_token(token)
    return VerifyResponse(**with_corr_id({"valid": True, "claims": claims.model_dump(mode="json")}))


@router.get("/me", response_model=UserPublic)
async def me(current_user=Depends(get_current_user)) -> UserPublic:
    return user_to_public(current_user)
