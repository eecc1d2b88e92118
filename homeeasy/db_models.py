"""SQLModel table definitions for HomeEasy.

Rows are storage shapes only; ``homeeasy.storage.sql`` converts them into the
canonical records from ``homeeasy.domain``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel

from homeeasy.domain import (
    BidStatus,
    LocationType,
    PaymentStatus,
    Role,
    TaskCategory,
    TaskStatus,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRow(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    email: str = Field(unique=True, index=True)
    password_hash: str
    first_name: str
    last_name: str = Field(default="")
    role: Role
    rating: float = Field(default=0.0)
    review_count: int = Field(default=0)
    bio: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (Index("ix_tasks_status_created_at", "status", "created_at"),)

    id: str = Field(primary_key=True)
    title: str
    description: str
    category: TaskCategory = Field(index=True)
    location: str
    location_type: LocationType = Field(default=LocationType.in_person)
    suggested_price: float
    status: TaskStatus = Field(default=TaskStatus.open, index=True)
    posted_by: str = Field(foreign_key="users.id", index=True)
    assigned_to: str | None = Field(default=None, foreign_key="users.id", index=True)
    due_date: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None


class BidRow(SQLModel, table=True):
    __tablename__ = "bids"
    __table_args__ = (
        # One pending bid per (task, bidder); settled bids do not count.
        Index(
            "ux_bids_pending_task_bidder",
            "task_id",
            "bidder_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_bids_task_created", "task_id", "created_at"),
    )

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    bidder_id: str = Field(foreign_key="users.id", index=True)
    amount: float
    message: str = Field(default="")
    estimated_duration: float
    status: BidStatus = Field(default=BidStatus.pending, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ConversationRow(SQLModel, table=True):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ux_conversations_key", "participant_key", "task_key", unique=True),
    )

    id: str = Field(primary_key=True)
    participant_key: str  # sorted member ids joined with ","
    task_key: str = Field(default="")  # task id, or "" for direct conversations
    task_id: str | None = None
    last_message_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, index=True)


class ConversationMemberRow(SQLModel, table=True):
    __tablename__ = "conversation_members"

    conversation_id: str = Field(foreign_key="conversations.id", primary_key=True)
    user_id: str = Field(foreign_key="users.id", primary_key=True, index=True)


class MessageRow(SQLModel, table=True):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_created", "conversation_id", "created_at"),)

    id: str = Field(primary_key=True)
    conversation_id: str = Field(foreign_key="conversations.id")
    sender_id: str = Field(foreign_key="users.id")
    content: str = Field(default="")
    media: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow)


class MessageReadRow(SQLModel, table=True):
    __tablename__ = "message_reads"

    message_id: str = Field(foreign_key="messages.id", primary_key=True)
    reader_id: str = Field(foreign_key="users.id", primary_key=True, index=True)
    read_at: datetime = Field(default_factory=_utcnow)


class ReviewRow(SQLModel, table=True):
    __tablename__ = "reviews"
    __table_args__ = (
        Index("ux_reviews_task_pair", "task_id", "reviewer_id", "reviewee_id", unique=True),
    )

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", index=True)
    reviewer_id: str = Field(foreign_key="users.id")
    reviewee_id: str = Field(foreign_key="users.id", index=True)
    rating: int = Field(ge=1, le=5)
    comment: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class PaymentRow(SQLModel, table=True):
    __tablename__ = "payments"

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id", unique=True)
    payer_id: str = Field(foreign_key="users.id", index=True)
    payee_id: str = Field(foreign_key="users.id", index=True)
    amount: float
    status: PaymentStatus = Field(default=PaymentStatus.completed)
    payment_intent_id: str
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
