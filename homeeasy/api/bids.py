"""Bid routes."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from homeeasy.auth import AuthUser
from homeeasy.config import settings
from homeeasy.content import parse_model, render_response
from homeeasy.domain import BidStatus, User
from homeeasy.models import (
    AcceptBidResponse,
    BidCreateRequest,
    BidListResponse,
    BidResponse,
    ErrorResponse,
)
from homeeasy.rate_limit import limiter
from homeeasy.services.bids import (
    accept_bid,
    get_bid,
    list_bids_for_task,
    list_bids_for_user,
    place_bid,
    withdraw_bid,
)
from homeeasy.state import AppState, Services

router = APIRouter()

_BID_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post("/v1/bids", response_model=BidResponse, status_code=201, responses=_BID_ERRORS)
@limiter.limit(settings.rate_limit_bid)
async def create_bid(request: Request, user: User = AuthUser, services: AppState = Services):
    """Bid on an open task. Only taskers can bid, once per task while pending."""
    req = await parse_model(request, BidCreateRequest, body_field="message")
    bid = await place_bid(services, user, req)
    return render_response(request, bid, status_code=201, headers={"X-Bid-Id": bid.id})


@router.get("/v1/bids/mine", response_model=BidListResponse)
@limiter.limit(settings.rate_limit_read)
async def my_bids(
    request: Request,
    user: User = AuthUser,
    services: AppState = Services,
    status: BidStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await list_bids_for_user(services, user, status=status, page=page, limit=limit)
    return render_response(request, result)


@router.get("/v1/bids/{bid_id}", response_model=BidResponse, responses=_BID_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def bid_detail(
    request: Request, bid_id: str, user: User = AuthUser, services: AppState = Services
):
    return render_response(request, await get_bid(services, bid_id, user))


@router.post("/v1/bids/{bid_id}/accept", response_model=AcceptBidResponse, responses=_BID_ERRORS)
@limiter.limit(settings.rate_limit_bid)
async def accept(
    request: Request, bid_id: str, user: User = AuthUser, services: AppState = Services
):
    """Accept a bid: assigns the task and rejects every other pending bid."""
    return render_response(request, await accept_bid(services, bid_id, user))


@router.post("/v1/bids/{bid_id}/withdraw", response_model=BidResponse, responses=_BID_ERRORS)
@limiter.limit(settings.rate_limit_bid)
async def withdraw(
    request: Request, bid_id: str, user: User = AuthUser, services: AppState = Services
):
    return render_response(request, await withdraw_bid(services, bid_id, user))


@router.get("/v1/tasks/{task_id}/bids", response_model=BidListResponse, responses=_BID_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def task_bids(
    request: Request,
    task_id: str,
    user: User = AuthUser,
    services: AppState = Services,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=settings.max_page_size),
):
    """All bids on a task you posted, newest first."""
    result = await list_bids_for_task(services, task_id, user, page=page, limit=limit)
    return render_response(request, result)
