"""Review and payment routes."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from homeeasy.auth import AuthUser
from homeeasy.config import settings
from homeeasy.content import parse_model, render_response
from homeeasy.domain import User
from homeeasy.models import (
    ErrorResponse,
    PaymentListResponse,
    PaymentRequest,
    PaymentResponse,
    ReviewListResponse,
    ReviewRequest,
    ReviewResponse,
)
from homeeasy.rate_limit import limiter
from homeeasy.services.payments import create_payment, payment_history
from homeeasy.services.reviews import create_review, list_reviews_for_user
from homeeasy.state import AppState, Services

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post("/v1/reviews", response_model=ReviewResponse, status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def post_review(request: Request, user: User = AuthUser, services: AppState = Services):
    """Review the other party of a completed task (1-5 stars)."""
    req = await parse_model(request, ReviewRequest, body_field="comment")
    return render_response(request, await create_review(services, user, req), status_code=201)


@router.get("/v1/users/{user_id}/reviews", response_model=ReviewListResponse)
@limiter.limit(settings.rate_limit_read)
async def user_reviews(
    request: Request,
    user_id: str,
    services: AppState = Services,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await list_reviews_for_user(services, user_id, page=page, limit=limit)
    return render_response(request, result)


@router.post("/v1/payments", response_model=PaymentResponse, status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def pay(request: Request, user: User = AuthUser, services: AppState = Services):
    """Pay the assigned tasker. Settles and completes the task."""
    req = await parse_model(request, PaymentRequest)
    return render_response(request, await create_payment(services, user, req), status_code=201)


@router.get("/v1/payments", response_model=PaymentListResponse)
@limiter.limit(settings.rate_limit_read)
async def payments(
    request: Request,
    user: User = AuthUser,
    services: AppState = Services,
    kind: str = Query("all", pattern="^(all|sent|received)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await payment_history(services, user, kind=kind, page=page, limit=limit)
    return render_response(request, result)
