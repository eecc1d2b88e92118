"""Persistence port shared by the SQL and in-memory stores."""

from __future__ import annotations

import abc
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Generic, TypeVar

from homeeasy.domain import (
    Bid,
    BidStatus,
    Conversation,
    Message,
    Payment,
    Review,
    Task,
    TaskStatus,
    User,
)

T = TypeVar("T")

SORTABLE_FIELDS: dict[str, frozenset[str]] = {
    "tasks": frozenset({"created_at", "updated_at", "suggested_price", "due_date"}),
    "bids": frozenset({"created_at", "amount"}),
    "reviews": frozenset({"created_at", "rating"}),
    "payments": frozenset({"created_at", "amount"}),
}

_clock_lock = threading.Lock()
_last_stamp: datetime | None = None


def utcnow() -> datetime:
    """Strictly increasing UTC timestamp, so creation order is a total order."""
    global _last_stamp
    with _clock_lock:
        now = datetime.now(UTC)
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
        return now


@dataclass
class FindOptions:
    sort: str = "created_at"
    order: str = "desc"
    page: int = 1
    limit: int = 20
    search: str | None = None

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit

    @property
    def descending(self) -> bool:
        return self.order.lower() != "asc"


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0


@dataclass
class AcceptOutcome:
    bid: Bid
    task: Task
    rejected: list[Bid]


@dataclass
class CancelOutcome:
    previous: Task
    task: Task
    rejected: list[Bid]


class Store(abc.ABC):
    """Key-indexed CRUD plus the compound operations the engines rely on.

    Lookups return ``None`` for unknown ids. Compound operations are atomic
    and raise ``NotFound``, ``InvalidState`` or ``Conflict`` when their
    precondition does not hold at the moment they apply.
    """

    backend = "abstract"

    # -- users --------------------------------------------------------------

    @abc.abstractmethod
    async def create_user(self, fields: dict[str, Any]) -> User: ...

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> User | None: ...

    @abc.abstractmethod
    async def get_user_by_email(self, email: str) -> User | None: ...

    @abc.abstractmethod
    async def get_users(self, user_ids: list[str]) -> dict[str, User]: ...

    @abc.abstractmethod
    async def update_user(self, user_id: str, patch: dict[str, Any]) -> User | None: ...

    @abc.abstractmethod
    async def refresh_rating(self, user_id: str) -> User | None:
        """Recompute rating (half-up, one decimal) and review count from reviews."""

    # -- tasks --------------------------------------------------------------

    @abc.abstractmethod
    async def create_task(self, fields: dict[str, Any]) -> Task: ...

    @abc.abstractmethod
    async def get_task(self, task_id: str) -> Task | None: ...

    @abc.abstractmethod
    async def get_tasks(self, task_ids: list[str]) -> dict[str, Task]: ...

    @abc.abstractmethod
    async def find_tasks(self, filters: dict[str, Any], options: FindOptions) -> Page[Task]: ...

    @abc.abstractmethod
    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task | None: ...

    @abc.abstractmethod
    async def transition_task(
        self, task_id: str, from_states: frozenset[TaskStatus], patch: dict[str, Any]
    ) -> Task | None:
        """Apply ``patch`` only if the task is currently in one of ``from_states``."""

    @abc.abstractmethod
    async def cancel_task(self, task_id: str) -> CancelOutcome:
        """Cancel a non-terminal task and reject its pending bids in one step."""

    @abc.abstractmethod
    async def delete_task(
        self, task_id: str, allowed_states: frozenset[TaskStatus]
    ) -> list[Bid]:
        """Delete a task and its bids; returns the bids that were still pending."""

    # -- bids ---------------------------------------------------------------

    @abc.abstractmethod
    async def place_bid(self, fields: dict[str, Any]) -> Bid:
        """Insert a pending bid if the task is open and the bidder has none pending."""

    @abc.abstractmethod
    async def get_bid(self, bid_id: str) -> Bid | None: ...

    @abc.abstractmethod
    async def find_bids(self, filters: dict[str, Any], options: FindOptions) -> Page[Bid]: ...

    @abc.abstractmethod
    async def accept_bid(self, bid_id: str) -> AcceptOutcome:
        """Accept a pending bid, assign its open task and reject the siblings."""

    @abc.abstractmethod
    async def transition_bid(
        self, bid_id: str, from_status: BidStatus, to_status: BidStatus
    ) -> Bid | None: ...

    # -- conversations & messages -------------------------------------------

    @abc.abstractmethod
    async def get_or_create_conversation(
        self, participants: list[str], task_id: str | None
    ) -> tuple[Conversation, bool]: ...

    @abc.abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    @abc.abstractmethod
    async def list_conversations(self, user_id: str) -> list[Conversation]: ...

    @abc.abstractmethod
    async def append_message(
        self, conversation_id: str, sender_id: str, content: str, media: list[str]
    ) -> Message:
        """Insert a message and move the conversation's last-message pointer."""

    @abc.abstractmethod
    async def get_messages(self, message_ids: list[str]) -> dict[str, Message]: ...

    @abc.abstractmethod
    async def find_messages(self, conversation_id: str, options: FindOptions) -> Page[Message]:
        """Messages newest first."""

    @abc.abstractmethod
    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        """Add ``reader_id`` to read_by of every message not sent by them; returns count."""

    @abc.abstractmethod
    async def unread_counts(self, user_id: str) -> dict[str, int]: ...

    # -- reviews & payments -------------------------------------------------

    @abc.abstractmethod
    async def create_review(self, fields: dict[str, Any]) -> Review: ...

    @abc.abstractmethod
    async def find_reviews(self, filters: dict[str, Any], options: FindOptions) -> Page[Review]: ...

    @abc.abstractmethod
    async def create_payment(self, fields: dict[str, Any]) -> tuple[Payment, Task]:
        """Record the task's single payment and force the task into completed."""

    @abc.abstractmethod
    async def find_payments(
        self, user_id: str, kind: str, options: FindOptions
    ) -> Page[Payment]: ...

    async def close(self) -> None:
        return None
