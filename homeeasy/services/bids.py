"""Bidding: placing, accepting and withdrawing bids on open tasks."""

from __future__ import annotations

import logging

from homeeasy.auth import require_role
from homeeasy.domain import Bid, BidStatus, Role, Task, User
from homeeasy.errors import Forbidden, InvalidArgument, InvalidState, NotFound
from homeeasy.models import AcceptBidResponse, BidCreateRequest, BidListResponse, BidResponse
from homeeasy.services.views import bid_view, public_user, task_summary, task_view
from homeeasy.state import AppState
from homeeasy.storage.base import FindOptions

logger = logging.getLogger("homeeasy.bids")

MIN_ESTIMATED_HOURS = 0.5


async def _require_task(services: AppState, task_id: str) -> Task:
    task = await services.store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


async def _require_bid(services: AppState, bid_id: str) -> Bid:
    bid = await services.store.get_bid(bid_id)
    if bid is None:
        raise NotFound("Bid not found")
    return bid


async def place_bid(services: AppState, bidder: User, req: BidCreateRequest) -> BidResponse:
    require_role(bidder, Role.tasker, "place bids")
    if req.amount < 0:
        raise InvalidArgument("Bid amount must not be negative")
    if req.estimated_duration < MIN_ESTIMATED_HOURS:
        raise InvalidArgument(f"Estimated duration must be at least {MIN_ESTIMATED_HOURS} hours")

    task = await _require_task(services, req.task_id)
    if task.posted_by == bidder.id:
        raise Forbidden("You cannot bid on your own task")

    bid = await services.store.place_bid(
        {
            "task_id": task.id,
            "bidder_id": bidder.id,
            "amount": req.amount,
            "message": req.message.strip(),
            "estimated_duration": req.estimated_duration,
            "status": BidStatus.pending,
        }
    )
    logger.info("Bid %s placed on task %s by %s", bid.id, task.id, bidder.id)

    services.notifier.emit_to_user(
        task.posted_by,
        "new_bid_notification",
        {
            "task_id": task.id,
            "bid_id": bid.id,
            "task_title": task.title,
            "bidder_id": bidder.id,
            "bidder_name": bidder.display_name,
            "amount": bid.amount,
            "message": bid.message,
        },
    )
    return bid_view(bid, bidder=public_user(bidder), task=task_summary(task))


async def accept_bid(services: AppState, bid_id: str, caller: User) -> AcceptBidResponse:
    bid = await _require_bid(services, bid_id)
    task = await _require_task(services, bid.task_id)
    if task.posted_by != caller.id:
        raise Forbidden("Only the task owner can accept bids")

    outcome = await services.store.accept_bid(bid_id)
    logger.info(
        "Bid %s accepted for task %s, %d competing bids rejected",
        bid_id,
        task.id,
        len(outcome.rejected),
    )

    services.notifier.emit_to_user(
        outcome.bid.bidder_id,
        "bid_accepted_notification",
        {
            "task_id": task.id,
            "bid_id": bid_id,
            "task_title": task.title,
            "amount": outcome.bid.amount,
        },
    )
    for rejected in outcome.rejected:
        services.notifier.emit_to_user(
            rejected.bidder_id,
            "bid_rejected_notification",
            {"task_id": task.id, "bid_id": rejected.id, "task_title": task.title},
        )

    return AcceptBidResponse(
        bid=bid_view(outcome.bid),
        task=task_view(outcome.task),
        rejected_bid_ids=[b.id for b in outcome.rejected],
    )


async def withdraw_bid(services: AppState, bid_id: str, caller: User) -> BidResponse:
    bid = await _require_bid(services, bid_id)
    if bid.bidder_id != caller.id:
        raise Forbidden("Not your bid")
    withdrawn = await services.store.transition_bid(bid_id, BidStatus.pending, BidStatus.withdrawn)
    if withdrawn is None:
        raise InvalidState("Only pending bids can be withdrawn")
    logger.info("Bid %s withdrawn", bid_id)
    return bid_view(withdrawn)


async def get_bid(services: AppState, bid_id: str, caller: User) -> BidResponse:
    bid = await _require_bid(services, bid_id)
    task = await _require_task(services, bid.task_id)
    if caller.id not in (bid.bidder_id, task.posted_by):
        raise Forbidden("Not allowed to view this bid")
    bidder = await services.store.get_user(bid.bidder_id)
    return bid_view(
        bid, bidder=public_user(bidder) if bidder else None, task=task_summary(task)
    )


async def list_bids_for_task(
    services: AppState, task_id: str, caller: User, page: int = 1, limit: int = 50
) -> BidListResponse:
    task = await _require_task(services, task_id)
    if task.posted_by != caller.id:
        raise Forbidden("Only the task owner can view its bids")

    options = FindOptions(page=page, limit=limit)
    result = await services.store.find_bids({"task_id": task_id}, options)
    bidders = await services.store.get_users([b.bidder_id for b in result.items])
    bids = [
        bid_view(
            b,
            bidder=(
                public_user(bidders[b.bidder_id], services.presence)
                if b.bidder_id in bidders
                else None
            ),
        )
        for b in result.items
    ]
    return BidListResponse(bids=bids, total=result.total, page=page, limit=limit)


async def list_bids_for_user(
    services: AppState,
    bidder: User,
    status: BidStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> BidListResponse:
    filters: dict = {"bidder_id": bidder.id}
    if status is not None:
        filters["status"] = status

    options = FindOptions(page=page, limit=limit)
    result = await services.store.find_bids(filters, options)
    tasks = await services.store.get_tasks([b.task_id for b in result.items])
    bids = [
        bid_view(b, task=task_summary(tasks[b.task_id]) if b.task_id in tasks else None)
        for b in result.items
    ]
    return BidListResponse(bids=bids, total=result.total, page=page, limit=limit)
