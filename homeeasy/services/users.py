"""Registration, login, profiles and presence reads."""

from __future__ import annotations

import logging

from homeeasy.auth import hash_password, issue_token, verify_password
from homeeasy.domain import User
from homeeasy.errors import InvalidArgument, NotFound, Unauthenticated
from homeeasy.models import (
    AuthResponse,
    OnlineUsersResponse,
    RegisterRequest,
    TaskListResponse,
    UserPrivate,
    UserProfileResponse,
    UserStatus,
    UserStatusResponse,
)
from homeeasy.services.reviews import list_reviews_for_user
from homeeasy.services.tasks import list_assigned_tasks, list_my_tasks
from homeeasy.services.views import private_user, public_user
from homeeasy.state import AppState

logger = logging.getLogger("homeeasy.users")

RECENT_REVIEWS = 10


async def register(services: AppState, req: RegisterRequest) -> AuthResponse:
    user = await services.store.create_user(
        {
            "email": req.email,
            "password_hash": hash_password(req.password),
            "first_name": req.first_name.strip(),
            "last_name": req.last_name.strip(),
            "role": req.role,
        }
    )
    logger.info("Registered %s %s", user.role.value, user.id)
    return AuthResponse(token=issue_token(user.id), user=private_user(user))


async def login(services: AppState, email: str, password: str) -> AuthResponse:
    user = await services.store.get_user_by_email(email.strip())
    if user is None or not verify_password(password, user.password_hash):
        raise Unauthenticated("Invalid email or password")
    return AuthResponse(token=issue_token(user.id), user=private_user(user))


def get_me(user: User) -> UserPrivate:
    return private_user(user)


async def update_profile(services: AppState, user: User, patch: dict) -> UserPrivate:
    updated = await services.store.update_user(user.id, patch)
    if updated is None:
        raise NotFound("User not found")
    return private_user(updated)


async def change_password(
    services: AppState, user: User, current_password: str, new_password: str
) -> None:
    if not verify_password(current_password, user.password_hash):
        raise InvalidArgument("Current password is incorrect")
    await services.store.update_user(user.id, {"password_hash": hash_password(new_password)})
    logger.info("Password changed for %s", user.id)


async def get_public_profile(services: AppState, user_id: str) -> UserProfileResponse:
    user = await services.store.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    reviews = await list_reviews_for_user(services, user_id, limit=RECENT_REVIEWS)
    return UserProfileResponse(
        **public_user(user, services.presence).model_dump(), recent_reviews=reviews.reviews
    )


async def list_user_tasks(
    services: AppState, user_id: str, kind: str = "posted", page: int = 1, limit: int = 20
) -> TaskListResponse:
    """Tasks a user posted, or tasks assigned to them when ``kind`` is "assigned"."""
    user = await services.store.get_user(user_id)
    if user is None:
        raise NotFound("User not found")
    if kind == "assigned":
        return await list_assigned_tasks(services, user, page=page, limit=limit)
    return await list_my_tasks(services, user, page=page, limit=limit)


def online_users(services: AppState) -> OnlineUsersResponse:
    online = services.presence.list_online()
    return OnlineUsersResponse(online=online, count=len(online))


def users_status(services: AppState, user_ids: list[str]) -> UserStatusResponse:
    statuses = services.presence.status_of(user_ids)
    return UserStatusResponse(
        statuses={uid: UserStatus(**status) for uid, status in statuses.items()}
    )
