"""Authentication: bcrypt password hashes and HS256 bearer tokens."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import bcrypt
from fastapi import Depends, Request
from joserfc import jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from homeeasy.config import settings
from homeeasy.domain import Role, User
from homeeasy.errors import Forbidden, Unauthenticated
from homeeasy.state import AppState, get_services


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def _signing_key() -> OctKey:
    return OctKey.import_key(settings.jwt_secret)


def issue_token(user_id: str) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.jwt_expire_minutes)).timestamp()),
    }
    return jwt.encode({"alg": settings.jwt_algorithm}, claims, _signing_key())


def resolve_caller(token: str) -> str:
    """Return the user id a token was issued for, or raise ``Unauthenticated``."""
    try:
        decoded = jwt.decode(token, _signing_key(), algorithms=[settings.jwt_algorithm])
        jwt.JWTClaimsRegistry(exp={"essential": True}, sub={"essential": True}).validate(
            decoded.claims
        )
    except (JoseError, ValueError):
        raise Unauthenticated("Invalid or expired token") from None
    return str(decoded.claims["sub"])


def bearer_token(header: str | None) -> str:
    if not header or not header.startswith("Bearer "):
        raise Unauthenticated("Missing or invalid Authorization header")
    return header[7:]


def role_of(user: User) -> Role:
    return user.role


def require_role(user: User, role: Role, action: str) -> None:
    if role_of(user) != role:
        raise Forbidden(f"Only {role.value}s can {action}")


async def authenticate(services: AppState, token: str) -> User:
    user = await services.store.get_user(resolve_caller(token))
    if user is None:
        raise Unauthenticated("User no longer exists")
    return user


async def get_current_user(
    request: Request,
    services: AppState = Depends(get_services),
) -> User:
    return await authenticate(services, bearer_token(request.headers.get("Authorization")))


AuthUser = Depends(get_current_user)
