"""Conversions from canonical records to response models."""

from __future__ import annotations

from homeeasy.domain import Bid, Message, Payment, Review, Task, User
from homeeasy.models import (
    BidResponse,
    MessageResponse,
    PaymentResponse,
    ReviewResponse,
    TaskResponse,
    TaskSummary,
    UserPrivate,
    UserPublic,
)
from homeeasy.presence import Presence


def public_user(user: User, presence: Presence | None = None) -> UserPublic:
    view = UserPublic.model_validate(user.model_dump())
    if presence is not None:
        view.is_online = presence.is_online(user.id)
    return view


def private_user(user: User) -> UserPrivate:
    return UserPrivate.model_validate(user.model_dump())


def task_view(task: Task, **extra) -> TaskResponse:
    return TaskResponse.model_validate({**task.model_dump(), **extra})


def task_summary(task: Task) -> TaskSummary:
    return TaskSummary.model_validate(task.model_dump())


def bid_view(bid: Bid, **extra) -> BidResponse:
    return BidResponse.model_validate({**bid.model_dump(), **extra})


def message_view(message: Message) -> MessageResponse:
    return MessageResponse.model_validate(message.model_dump())


def review_view(review: Review, **extra) -> ReviewResponse:
    return ReviewResponse.model_validate({**review.model_dump(), **extra})


def payment_view(payment: Payment) -> PaymentResponse:
    return PaymentResponse.model_validate(payment.model_dump())
