"""In-process store with the same observable behaviour as ``SqlStore``.

All mutations run under one ``asyncio.Lock``; callers always receive copies,
so nothing outside the critical section can observe a half-applied change.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any, TypeVar

from pydantic import BaseModel

from homeeasy import ids
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
    round_rating,
)
from homeeasy.errors import Conflict, InvalidArgument, InvalidState, NotFound
from homeeasy.storage.base import (
    SORTABLE_FIELDS,
    AcceptOutcome,
    CancelOutcome,
    FindOptions,
    Page,
    Store,
    utcnow,
)

logger = logging.getLogger("homeeasy.storage.memory")

M = TypeVar("M", bound=BaseModel)

_PAYABLE_STATES = frozenset({TaskStatus.assigned, TaskStatus.in_progress, TaskStatus.completed})


def _copy(record: M) -> M:
    return record.model_copy(deep=True)


def _merge(record: M, patch: dict[str, Any]) -> M:
    return type(record).model_validate({**record.model_dump(), **patch})


def _matches(record: BaseModel, filters: dict[str, Any]) -> bool:
    for key, expected in filters.items():
        value = getattr(record, key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _paginate(records: Iterable[M], table: str, options: FindOptions) -> Page[M]:
    if options.sort not in SORTABLE_FIELDS[table]:
        raise InvalidArgument(f"Cannot sort by '{options.sort}'")
    rows = list(records)
    # Missing values sort last in either direction, ids break ties.
    present = [r for r in rows if getattr(r, options.sort) is not None]
    missing = [r for r in rows if getattr(r, options.sort) is None]
    present.sort(key=lambda r: (getattr(r, options.sort), r.id), reverse=options.descending)
    missing.sort(key=lambda r: r.id, reverse=options.descending)
    ordered = present + missing
    window = ordered[options.offset : options.offset + options.limit]
    return Page(items=[_copy(r) for r in window], total=len(ordered))


class MemoryStore(Store):
    backend = "memory"

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {}
        self._tasks: dict[str, Task] = {}
        self._bids: dict[str, Bid] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        self._reviews: dict[str, Review] = {}
        self._payments: dict[str, Payment] = {}

    # -- users --------------------------------------------------------------

    async def create_user(self, fields: dict[str, Any]) -> User:
        async with self._lock:
            email = fields["email"].lower()
            if any(u.email == email for u in self._users.values()):
                raise Conflict("User already exists")
            now = utcnow()
            user = User(
                **{**fields, "email": email},
                id=ids.user_id(),
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            return _copy(user)

    async def get_user(self, user_id: str) -> User | None:
        user = self._users.get(user_id)
        return _copy(user) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        email = email.lower()
        for user in self._users.values():
            if user.email == email:
                return _copy(user)
        return None

    async def get_users(self, user_ids: list[str]) -> dict[str, User]:
        return {uid: _copy(self._users[uid]) for uid in set(user_ids) if uid in self._users}

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> User | None:
        async with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            user = _merge(user, {**patch, "updated_at": utcnow()})
            self._users[user_id] = user
            return _copy(user)

    async def refresh_rating(self, user_id: str) -> User | None:
        async with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            ratings = [r.rating for r in self._reviews.values() if r.reviewee_id == user_id]
            user = _merge(
                user,
                {
                    "rating": round_rating(ratings),
                    "review_count": len(ratings),
                    "updated_at": utcnow(),
                },
            )
            self._users[user_id] = user
            return _copy(user)

    # -- tasks --------------------------------------------------------------

    async def create_task(self, fields: dict[str, Any]) -> Task:
        async with self._lock:
            now = utcnow()
            task = Task(**fields, id=ids.task_id(), created_at=now, updated_at=now)
            self._tasks[task.id] = task
            return _copy(task)

    async def get_task(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        return _copy(task) if task else None

    async def get_tasks(self, task_ids: list[str]) -> dict[str, Task]:
        return {tid: _copy(self._tasks[tid]) for tid in set(task_ids) if tid in self._tasks}

    async def find_tasks(self, filters: dict[str, Any], options: FindOptions) -> Page[Task]:
        rows = [t for t in self._tasks.values() if _matches(t, filters)]
        if options.search:
            term = options.search.lower()
            rows = [t for t in rows if term in t.title.lower() or term in t.description.lower()]
        return _paginate(rows, "tasks", options)

    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            if not task:
                return None
            task = _merge(task, {**patch, "updated_at": utcnow()})
            self._tasks[task_id] = task
            return _copy(task)

    async def transition_task(
        self, task_id: str, from_states: frozenset[TaskStatus], patch: dict[str, Any]
    ) -> Task | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            if not task or task.status not in from_states:
                return None
            task = _merge(task, {**patch, "updated_at": utcnow()})
            self._tasks[task_id] = task
            return _copy(task)

    async def cancel_task(self, task_id: str) -> CancelOutcome:
        async with self._lock:
            previous = self._tasks.get(task_id)
            if not previous:
                raise NotFound("Task not found")
            if previous.status in (TaskStatus.completed, TaskStatus.cancelled):
                raise InvalidState(f"Cannot cancel a task that is already {previous.status.value}")
            now = utcnow()
            task = _merge(
                previous,
                {"status": TaskStatus.cancelled, "assigned_to": None, "updated_at": now},
            )
            self._tasks[task_id] = task
            rejected = self._reject_pending(task_id, now)
            return CancelOutcome(previous=_copy(previous), task=_copy(task), rejected=rejected)

    async def delete_task(
        self, task_id: str, allowed_states: frozenset[TaskStatus]
    ) -> list[Bid]:
        async with self._lock:
            task = self._tasks.get(task_id)
            if not task:
                raise NotFound("Task not found")
            if task.status not in allowed_states:
                raise InvalidState(f"Task is {task.status.value}, cannot be deleted")
            del self._tasks[task_id]
            removed = [b for b in self._bids.values() if b.task_id == task_id]
            for bid in removed:
                del self._bids[bid.id]
            return [_copy(b) for b in removed if b.status == BidStatus.pending]

    def _reject_pending(self, task_id: str, now, keep: str | None = None) -> list[Bid]:
        rejected: list[Bid] = []
        for bid in list(self._bids.values()):
            if bid.task_id == task_id and bid.id != keep and bid.status == BidStatus.pending:
                bid = _merge(bid, {"status": BidStatus.rejected, "updated_at": now})
                self._bids[bid.id] = bid
                rejected.append(_copy(bid))
        return rejected

    # -- bids ---------------------------------------------------------------

    async def place_bid(self, fields: dict[str, Any]) -> Bid:
        async with self._lock:
            task = self._tasks.get(fields["task_id"])
            if not task:
                raise NotFound("Task not found")
            if task.status != TaskStatus.open:
                raise InvalidState("Task is no longer accepting bids")
            for other in self._bids.values():
                if (
                    other.task_id == task.id
                    and other.bidder_id == fields["bidder_id"]
                    and other.status == BidStatus.pending
                ):
                    raise Conflict("You already have a pending bid for this task")
            now = utcnow()
            bid = Bid(**fields, id=ids.bid_id(), created_at=now, updated_at=now)
            self._bids[bid.id] = bid
            return _copy(bid)

    async def get_bid(self, bid_id: str) -> Bid | None:
        bid = self._bids.get(bid_id)
        return _copy(bid) if bid else None

    async def find_bids(self, filters: dict[str, Any], options: FindOptions) -> Page[Bid]:
        rows = [b for b in self._bids.values() if _matches(b, filters)]
        return _paginate(rows, "bids", options)

    async def accept_bid(self, bid_id: str) -> AcceptOutcome:
        async with self._lock:
            bid = self._bids.get(bid_id)
            if not bid:
                raise NotFound("Bid not found")
            task = self._tasks.get(bid.task_id)
            if not task:
                raise NotFound("Task not found")
            if bid.status != BidStatus.pending:
                raise InvalidState("Bid is no longer pending")
            if task.status != TaskStatus.open:
                raise InvalidState(f"Task is {task.status.value}, not open")
            now = utcnow()
            bid = _merge(bid, {"status": BidStatus.accepted, "updated_at": now})
            self._bids[bid.id] = bid
            task = _merge(
                task,
                {"status": TaskStatus.assigned, "assigned_to": bid.bidder_id, "updated_at": now},
            )
            self._tasks[task.id] = task
            rejected = self._reject_pending(task.id, now, keep=bid.id)
            return AcceptOutcome(bid=_copy(bid), task=_copy(task), rejected=rejected)

    async def transition_bid(
        self, bid_id: str, from_status: BidStatus, to_status: BidStatus
    ) -> Bid | None:
        async with self._lock:
            bid = self._bids.get(bid_id)
            if not bid or bid.status != from_status:
                return None
            bid = _merge(bid, {"status": to_status, "updated_at": utcnow()})
            self._bids[bid_id] = bid
            return _copy(bid)

    # -- conversations & messages -------------------------------------------

    async def get_or_create_conversation(
        self, participants: list[str], task_id: str | None
    ) -> tuple[Conversation, bool]:
        members = sorted(set(participants))
        async with self._lock:
            for conv in self._conversations.values():
                if conv.participants == members and conv.task_id == task_id:
                    return _copy(conv), False
            now = utcnow()
            conv = Conversation(
                id=ids.conversation_id(),
                participants=members,
                task_id=task_id,
                created_at=now,
                updated_at=now,
            )
            self._conversations[conv.id] = conv
            return _copy(conv), True

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conv = self._conversations.get(conversation_id)
        return _copy(conv) if conv else None

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        rows = [c for c in self._conversations.values() if user_id in c.participants]
        rows.sort(key=lambda c: (c.updated_at, c.id), reverse=True)
        return [_copy(c) for c in rows]

    async def append_message(
        self, conversation_id: str, sender_id: str, content: str, media: list[str]
    ) -> Message:
        async with self._lock:
            conv = self._conversations.get(conversation_id)
            if not conv:
                raise NotFound("Conversation not found")
            msg = Message(
                id=ids.message_id(),
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                media=list(media),
                read_by=[],
                created_at=utcnow(),
            )
            self._messages[msg.id] = msg
            self._conversations[conversation_id] = _merge(
                conv, {"last_message_id": msg.id, "updated_at": msg.created_at}
            )
            return _copy(msg)

    async def get_messages(self, message_ids: list[str]) -> dict[str, Message]:
        return {
            mid: _copy(self._messages[mid]) for mid in set(message_ids) if mid in self._messages
        }

    async def find_messages(self, conversation_id: str, options: FindOptions) -> Page[Message]:
        rows = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        rows.sort(key=lambda m: (m.created_at, m.id), reverse=True)
        window = rows[options.offset : options.offset + options.limit]
        return Page(items=[_copy(m) for m in window], total=len(rows))

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        async with self._lock:
            marked = 0
            for msg in self._messages.values():
                if (
                    msg.conversation_id == conversation_id
                    and msg.sender_id != reader_id
                    and reader_id not in msg.read_by
                ):
                    msg.read_by.append(reader_id)
                    marked += 1
            return marked

    async def unread_counts(self, user_id: str) -> dict[str, int]:
        conv_ids = {c.id for c in self._conversations.values() if user_id in c.participants}
        counts: dict[str, int] = {}
        for msg in self._messages.values():
            if (
                msg.conversation_id in conv_ids
                and msg.sender_id != user_id
                and user_id not in msg.read_by
            ):
                counts[msg.conversation_id] = counts.get(msg.conversation_id, 0) + 1
        return counts

    # -- reviews & payments -------------------------------------------------

    async def create_review(self, fields: dict[str, Any]) -> Review:
        async with self._lock:
            for other in self._reviews.values():
                if (
                    other.task_id == fields["task_id"]
                    and other.reviewer_id == fields["reviewer_id"]
                    and other.reviewee_id == fields["reviewee_id"]
                ):
                    raise Conflict("You have already reviewed this task")
            review = Review(**fields, id=ids.review_id(), created_at=utcnow())
            self._reviews[review.id] = review
            return _copy(review)

    async def find_reviews(self, filters: dict[str, Any], options: FindOptions) -> Page[Review]:
        rows = [r for r in self._reviews.values() if _matches(r, filters)]
        return _paginate(rows, "reviews", options)

    async def create_payment(self, fields: dict[str, Any]) -> tuple[Payment, Task]:
        async with self._lock:
            task = self._tasks.get(fields["task_id"])
            if not task:
                raise NotFound("Task not found")
            if not task.assigned_to or task.status not in _PAYABLE_STATES:
                raise InvalidState("Task must be assigned before payment")
            if any(p.task_id == task.id for p in self._payments.values()):
                raise Conflict("Task has already been paid")
            now = utcnow()
            payment = Payment(
                **fields,
                id=ids.payment_id(),
                payee_id=task.assigned_to,
                created_at=now,
                completed_at=now,
            )
            self._payments[payment.id] = payment
            task = _merge(
                task,
                {
                    "status": TaskStatus.completed,
                    "completed_at": task.completed_at or now,
                    "updated_at": now,
                },
            )
            self._tasks[task.id] = task
            logger.debug("Recorded payment %s for task %s", payment.id, task.id)
            return _copy(payment), _copy(task)

    async def find_payments(
        self, user_id: str, kind: str, options: FindOptions
    ) -> Page[Payment]:
        if kind == "sent":
            rows = [p for p in self._payments.values() if p.payer_id == user_id]
        elif kind == "received":
            rows = [p for p in self._payments.values() if p.payee_id == user_id]
        else:
            rows = [
                p for p in self._payments.values() if user_id in (p.payer_id, p.payee_id)
            ]
        return _paginate(rows, "payments", options)
