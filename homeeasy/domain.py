"""Canonical record types shared by the engines and every store.

Stores translate their own row shapes into these models at the persistence
boundary, so the lifecycle and bidding code never inspects storage details.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field


class Role(str, enum.Enum):
    client = "client"
    tasker = "tasker"


class TaskStatus(str, enum.Enum):
    open = "open"
    assigned = "assigned"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class BidStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class TaskCategory(str, enum.Enum):
    household = "household"
    tech = "tech"
    transportation = "transportation"
    repairs = "repairs"
    cleaning = "cleaning"
    gardening = "gardening"
    moving = "moving"
    handyman = "handyman"
    other = "other"


class LocationType(str, enum.Enum):
    in_person = "in_person"
    online = "online"


class PaymentStatus(str, enum.Enum):
    completed = "completed"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.open: frozenset({TaskStatus.assigned, TaskStatus.cancelled}),
    TaskStatus.assigned: frozenset(
        {TaskStatus.in_progress, TaskStatus.completed, TaskStatus.cancelled}
    ),
    TaskStatus.in_progress: frozenset({TaskStatus.completed, TaskStatus.cancelled}),
    TaskStatus.completed: frozenset(),
    TaskStatus.cancelled: frozenset(),
}

TERMINAL_TASK_STATES = frozenset({TaskStatus.completed, TaskStatus.cancelled})


def sources_for(target: TaskStatus) -> frozenset[TaskStatus]:
    """States from which ``target`` may be entered."""
    return frozenset(s for s, targets in TASK_TRANSITIONS.items() if target in targets)


def round_rating(ratings: list[int]) -> float:
    """Mean rounded half-up to one decimal; 0.0 for no ratings."""
    if not ratings:
        return 0.0
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class User(BaseModel):
    id: str
    email: str
    password_hash: str
    first_name: str
    last_name: str = ""
    role: Role
    rating: float = 0.0
    review_count: int = 0
    bio: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Task(BaseModel):
    id: str
    title: str
    description: str
    category: TaskCategory
    location: str
    location_type: LocationType = LocationType.in_person
    suggested_price: float
    status: TaskStatus = TaskStatus.open
    posted_by: str
    assigned_to: str | None = None
    due_date: datetime | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class Bid(BaseModel):
    id: str
    task_id: str
    bidder_id: str
    amount: float
    message: str = ""
    estimated_duration: float
    status: BidStatus = BidStatus.pending
    created_at: datetime
    updated_at: datetime


class Conversation(BaseModel):
    id: str
    participants: list[str]
    task_id: str | None = None
    last_message_id: str | None = None
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str = ""
    media: list[str] = Field(default_factory=list)
    read_by: list[str] = Field(default_factory=list)
    created_at: datetime


class Review(BaseModel):
    id: str
    task_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str | None = None
    created_at: datetime


class Payment(BaseModel):
    id: str
    task_id: str
    payer_id: str
    payee_id: str
    amount: float
    status: PaymentStatus = PaymentStatus.completed
    payment_intent_id: str
    created_at: datetime
    completed_at: datetime | None = None
