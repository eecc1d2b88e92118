"""Reviews between the two parties of a completed task."""

from __future__ import annotations

import logging

from homeeasy.domain import TaskStatus, User
from homeeasy.errors import Forbidden, InvalidArgument, InvalidState, NotFound
from homeeasy.models import ReviewListResponse, ReviewRequest, ReviewResponse
from homeeasy.services.views import public_user, review_view
from homeeasy.state import AppState
from homeeasy.storage.base import FindOptions

logger = logging.getLogger("homeeasy.reviews")


async def create_review(services: AppState, reviewer: User, req: ReviewRequest) -> ReviewResponse:
    task = await services.store.get_task(req.task_id)
    if task is None:
        raise NotFound("Task not found")
    if task.status != TaskStatus.completed:
        raise InvalidState("Only completed tasks can be reviewed")

    parties = {task.posted_by, task.assigned_to}
    if reviewer.id not in parties:
        raise Forbidden("Only the client and the assigned tasker can review this task")
    counterpart = task.assigned_to if reviewer.id == task.posted_by else task.posted_by
    if req.reviewee_id != counterpart:
        raise InvalidArgument("You can only review the other party of the task")

    review = await services.store.create_review(
        {
            "task_id": task.id,
            "reviewer_id": reviewer.id,
            "reviewee_id": req.reviewee_id,
            "rating": req.rating,
            "comment": req.comment.strip() if req.comment else None,
        }
    )
    reviewee = await services.store.refresh_rating(req.reviewee_id)
    logger.info(
        "Review %s for %s, rating now %s",
        review.id,
        req.reviewee_id,
        reviewee.rating if reviewee else "n/a",
    )

    services.notifier.emit_to_user(
        req.reviewee_id,
        "review_received_notification",
        {
            "task_id": task.id,
            "task_title": task.title,
            "review_id": review.id,
            "rating": review.rating,
            "reviewer_name": reviewer.display_name,
        },
    )
    return review_view(review, reviewer=public_user(reviewer))


async def list_reviews_for_user(
    services: AppState, user_id: str, page: int = 1, limit: int = 20
) -> ReviewListResponse:
    if await services.store.get_user(user_id) is None:
        raise NotFound("User not found")
    result = await services.store.find_reviews(
        {"reviewee_id": user_id}, FindOptions(page=page, limit=limit)
    )
    reviewers = await services.store.get_users([r.reviewer_id for r in result.items])
    reviews = [
        review_view(
            r,
            reviewer=public_user(reviewers[r.reviewer_id]) if r.reviewer_id in reviewers else None,
        )
        for r in result.items
    ]
    return ReviewListResponse(reviews=reviews, total=result.total, page=page, limit=limit)
