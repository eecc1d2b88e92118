"""Pydantic models for request/response schemas."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from homeeasy.domain import (
    BidStatus,
    LocationType,
    PaymentStatus,
    Role,
    TaskCategory,
    TaskStatus,
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _validate_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValueError("Invalid email address")
    return value


def _not_null(value):
    if value is None:
        raise ValueError("Field may not be null")
    return value


# -- requests ---------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(default="", max_length=50)
    role: Role

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=6, max_length=128)


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: str | None = Field(default=None, min_length=1, max_length=50)
    last_name: str | None = Field(default=None, max_length=50)
    bio: str | None = Field(default=None, max_length=500)

    @field_validator("first_name", "last_name")
    @classmethod
    def not_null(cls, v: str | None) -> str:
        return _not_null(v)


class TaskCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100, description="Short task title")
    description: str = Field(..., min_length=10, max_length=1000)
    category: TaskCategory
    location: str = Field(..., min_length=1, max_length=200)
    location_type: LocationType = LocationType.in_person
    suggested_price: float = Field(..., ge=0, allow_inf_nan=False)
    due_date: datetime | None = None


class TaskUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=10, max_length=1000)
    category: TaskCategory | None = None
    location: str | None = Field(default=None, min_length=1, max_length=200)
    location_type: LocationType | None = None
    suggested_price: float | None = Field(default=None, ge=0, allow_inf_nan=False)
    due_date: datetime | None = None

    @field_validator(
        "title", "description", "category", "location", "location_type", "suggested_price"
    )
    @classmethod
    def not_null(cls, v):
        return _not_null(v)


class BidCreateRequest(BaseModel):
    task_id: str
    amount: float = Field(..., allow_inf_nan=False)
    message: str = Field(default="", max_length=500)
    estimated_duration: float = Field(
        ..., allow_inf_nan=False, description="Estimated hours of work"
    )


class ConversationRequest(BaseModel):
    participant_id: str
    task_id: str | None = None


class MessageRequest(BaseModel):
    content: str = ""
    media: list[str] = Field(default_factory=list, max_length=5)


class ReviewRequest(BaseModel):
    task_id: str
    reviewee_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


class PaymentRequest(BaseModel):
    task_id: str
    amount: float = Field(..., gt=0, allow_inf_nan=False)


class StatusRequest(BaseModel):
    user_ids: list[str] = Field(..., max_length=200)


# -- responses --------------------------------------------------------------


class ErrorResponse(BaseModel):
    error: str = Field(description="Error message")


class UserPublic(BaseModel):
    id: str
    first_name: str
    last_name: str
    role: Role
    rating: float
    review_count: int
    bio: str | None = None
    created_at: datetime
    is_online: bool | None = None


class UserPrivate(UserPublic):
    email: str
    updated_at: datetime


class AuthResponse(BaseModel):
    token: str
    user: UserPrivate


class TaskResponse(BaseModel):
    id: str
    title: str
    description: str
    category: TaskCategory
    location: str
    location_type: LocationType
    suggested_price: float
    status: TaskStatus
    posted_by: str
    assigned_to: str | None = None
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    poster: UserPublic | None = None
    bid_count: int | None = None


class TaskSummary(BaseModel):
    id: str
    title: str
    category: TaskCategory
    status: TaskStatus
    suggested_price: float
    posted_by: str


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int
    page: int
    limit: int


class BidResponse(BaseModel):
    id: str
    task_id: str
    bidder_id: str
    amount: float
    message: str
    estimated_duration: float
    status: BidStatus
    created_at: datetime
    updated_at: datetime
    bidder: UserPublic | None = None
    task: TaskSummary | None = None


class BidListResponse(BaseModel):
    bids: list[BidResponse]
    total: int
    page: int
    limit: int


class AcceptBidResponse(BaseModel):
    bid: BidResponse
    task: TaskResponse
    rejected_bid_ids: list[str]


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    media: list[str]
    read_by: list[str]
    created_at: datetime


class ConversationResponse(BaseModel):
    id: str
    participants: list[UserPublic]
    task_id: str | None = None
    task: TaskSummary | None = None
    last_message: MessageResponse | None = None
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime


class MessageListResponse(BaseModel):
    messages: list[MessageResponse]
    total: int
    page: int
    limit: int


class UnreadCountResponse(BaseModel):
    count: int
    conversation_counts: dict[str, int]


class ReviewResponse(BaseModel):
    id: str
    task_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str | None = None
    created_at: datetime
    reviewer: UserPublic | None = None


class UserProfileResponse(UserPublic):
    recent_reviews: list[ReviewResponse] = Field(default_factory=list)


class ReviewListResponse(BaseModel):
    reviews: list[ReviewResponse]
    total: int
    page: int
    limit: int


class PaymentResponse(BaseModel):
    id: str
    task_id: str
    payer_id: str
    payee_id: str
    amount: float
    status: PaymentStatus
    payment_intent_id: str
    created_at: datetime
    completed_at: datetime | None = None


class PaymentListResponse(BaseModel):
    payments: list[PaymentResponse]
    total: int
    page: int
    limit: int


class OnlineUsersResponse(BaseModel):
    online: list[str]
    count: int


class UserStatus(BaseModel):
    is_online: bool
    last_seen: datetime | None = None


class UserStatusResponse(BaseModel):
    statuses: dict[str, UserStatus]
