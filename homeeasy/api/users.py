"""Registration, login, profile and presence routes."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query, Request, Response

from homeeasy.auth import AuthUser
from homeeasy.config import settings
from homeeasy.content import parse_model, render_response
from homeeasy.domain import User
from homeeasy.models import (
    AuthResponse,
    ErrorResponse,
    LoginRequest,
    OnlineUsersResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    StatusRequest,
    TaskListResponse,
    UserPrivate,
    UserProfileResponse,
    UserStatusResponse,
)
from homeeasy.rate_limit import limiter
from homeeasy.services.users import (
    change_password,
    get_me,
    get_public_profile,
    list_user_tasks,
    login,
    online_users,
    register,
    update_profile,
    users_status,
)
from homeeasy.state import AppState, Services

router = APIRouter()


@router.post(
    "/v1/auth/register",
    response_model=AuthResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_register)
async def register_user(request: Request, services: AppState = Services):
    """Create an account as a client or a tasker and receive a bearer token."""
    req = await parse_model(request, RegisterRequest)
    result = await register(services, req)
    return render_response(request, result, status_code=201)


@router.post(
    "/v1/auth/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_login)
async def login_user(request: Request, services: AppState = Services):
    req = await parse_model(request, LoginRequest)
    return render_response(request, await login(services, req.email, req.password))


@router.get("/v1/me", response_model=UserPrivate, responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def me(request: Request, user: User = AuthUser):
    return render_response(request, get_me(user))


@router.patch("/v1/me", response_model=UserPrivate, responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_create)
async def update_me(request: Request, user: User = AuthUser, services: AppState = Services):
    """Update first name, last name or bio."""
    req = await parse_model(request, ProfileUpdateRequest, body_field="bio")
    result = await update_profile(services, user, req.model_dump(exclude_unset=True))
    return render_response(request, result)


@router.post(
    "/v1/me/password",
    status_code=204,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_login)
async def change_my_password(
    request: Request, user: User = AuthUser, services: AppState = Services
):
    """Replace the password; the current one must be supplied."""
    req = await parse_model(request, PasswordChangeRequest)
    await change_password(services, user, req.current_password, req.new_password)
    return Response(status_code=204)


@router.get("/v1/users/online", response_model=OnlineUsersResponse)
@limiter.limit(settings.rate_limit_read)
async def list_online(request: Request, user: User = AuthUser, services: AppState = Services):
    return render_response(request, online_users(services))


@router.post("/v1/users/status", response_model=UserStatusResponse)
@limiter.limit(settings.rate_limit_read)
async def status_of_users(request: Request, user: User = AuthUser, services: AppState = Services):
    """Online status and last-seen time for a list of user ids."""
    req = await parse_model(request, StatusRequest)
    return render_response(request, users_status(services, req.user_ids))


@router.get(
    "/v1/users/{user_id}",
    response_model=UserProfileResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def public_profile(request: Request, user_id: str, services: AppState = Services):
    """Public profile with the ten most recent reviews received."""
    return render_response(request, await get_public_profile(services, user_id))


@router.get(
    "/v1/users/{user_id}/tasks",
    response_model=TaskListResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_read)
async def user_tasks(
    request: Request,
    user_id: str,
    services: AppState = Services,
    kind: Literal["posted", "assigned"] = Query("posted", alias="type"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await list_user_tasks(services, user_id, kind=kind, page=page, limit=limit)
    return render_response(request, result)
