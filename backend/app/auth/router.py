"""Auth router for staff and guest accounts.

Endpoints:
    POST   /auth/login          - Staff login (username + password)
    POST   /auth/register       - Guest self-registration
    POST   /auth/guest/login    - Guest login (email + password)
    GET    /auth/me             - Current user profile
    POST   /auth/users          - Create a staff account (admin only)
    DELETE /auth/users/{id}     - Deactivate an account (admin only)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from app.errors import AppError, to_http_exception
from app.users.schemas import UserInfo, UserRole

from .dependencies import get_auth_service, get_current_user, require_admin
from .service import AuthService, TokenClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    """Request body for staff login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class GuestLoginRequest(BaseModel):
    """Request body for guest login."""
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class GuestRegisterRequest(BaseModel):
    """Request body for guest self-registration."""
    email: str = Field(..., min_length=3, max_length=255)
    password: str
    full_name: str = Field(..., min_length=1, max_length=100)


class CreateUserRequest(BaseModel):
    """Request body for creating a staff account."""
    username: str
    password: str
    role: UserRole
    full_name: Optional[str] = Field(default=None, max_length=100)


class AuthResponse(BaseModel):
    token: str
    user: UserInfo


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    try:
        token, user = await run_in_threadpool(auth.login, body.username, body.password)
    except AppError as e:
        logger.info(f"Staff login failed for '{body.username}': {e.message}")
        raise to_http_exception(e)
    return AuthResponse(token=token, user=UserInfo.from_user(user))


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register_guest(
    body: GuestRegisterRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    try:
        token, user = await run_in_threadpool(auth.register_guest, body.email, body.password, body.full_name)
    except AppError as e:
        raise to_http_exception(e)
    logger.info("Guest %s registered", user.id)
    return AuthResponse(token=token, user=UserInfo.from_user(user))


@router.post("/guest/login", response_model=AuthResponse)
async def guest_login(
    body: GuestLoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    try:
        token, user = await run_in_threadpool(auth.login_guest, body.email, body.password)
    except AppError as e:
        raise to_http_exception(e)
    return AuthResponse(token=token, user=UserInfo.from_user(user))


@router.get("/me", response_model=UserInfo)
async def me(
    current: TokenClaims = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
) -> UserInfo:
    """Profile of the token holder.

    Returns 404 if the account no longer exists.
    """
    try:
        user = auth.users.get(current.user_id)
    except AppError as e:
        raise to_http_exception(e)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "User not found"})
    return UserInfo.from_user(user)


@router.post("/users", response_model=UserInfo, status_code=201)
async def create_user(
    body: CreateUserRequest,
    current: TokenClaims = Depends(require_admin),
    auth: AuthService = Depends(get_auth_service),
) -> UserInfo:
    try:
        user = await run_in_threadpool(
            auth.create_staff, body.username, body.password, body.role, body.full_name
        )
    except AppError as e:
        raise to_http_exception(e)
    logger.info("Admin %s created %s account %s", current.user_id, user.role.value, user.id)
    return UserInfo.from_user(user)


@router.delete("/users/{user_id}", response_model=UserInfo)
async def deactivate_user(
    user_id: str,
    current: TokenClaims = Depends(require_admin),
    auth: AuthService = Depends(get_auth_service),
) -> UserInfo:
    """Deactivate an account. Deactivated users drop out of contact lists
    and can no longer log in; their message history is kept."""
    if user_id == current.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "Cannot deactivate your own account"},
        )
    try:
        user = auth.users.deactivate(user_id)
    except AppError as e:
        raise to_http_exception(e)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "User not found"})
    logger.info("Admin %s deactivated user %s", current.user_id, user_id)
    return UserInfo.from_user(user)
