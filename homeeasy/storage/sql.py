"""Durable store on async SQLAlchemy / SQLModel.

Every compound operation is a single transaction whose first statement is a
conditional UPDATE or INSERT. A row count of zero (or an integrity error)
means the precondition no longer holds; the transaction is rolled back and
the current rows are inspected only to pick the right error.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy import DateTime, and_, delete, func, insert, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from homeeasy import ids
from homeeasy.db_models import (
    BidRow,
    ConversationMemberRow,
    ConversationRow,
    MessageReadRow,
    MessageRow,
    PaymentRow,
    ReviewRow,
    TaskRow,
    UserRow,
)
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

logger = logging.getLogger("homeeasy.storage.sql")

M = TypeVar("M", bound=BaseModel)

_OPEN_STATES = frozenset({TaskStatus.open, TaskStatus.assigned, TaskStatus.in_progress})
_PAYABLE_STATES = frozenset({TaskStatus.assigned, TaskStatus.in_progress, TaskStatus.completed})


def _aware(value: Any) -> Any:
    # SQLite hands datetimes back naive; everything is stored in UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _record(model: type[M], row: Any, **extra: Any) -> M:
    data = {key: _aware(value) for key, value in row.model_dump().items()}
    data.update(extra)
    return model.model_validate(data)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _apply_filters(stmt, row_cls, filters: dict[str, Any]):
    for key, expected in filters.items():
        column = getattr(row_cls, key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            stmt = stmt.where(column.in_(list(expected)))
        elif expected is None:
            stmt = stmt.where(column.is_(None))
        else:
            stmt = stmt.where(column == expected)
    return stmt


def _apply_order(stmt, row_cls, table: str, options: FindOptions):
    if options.sort not in SORTABLE_FIELDS[table]:
        raise InvalidArgument(f"Cannot sort by '{options.sort}'")
    column = getattr(row_cls, options.sort)
    if options.descending:
        return stmt.order_by(column.is_(None), column.desc(), row_cls.id.desc())
    return stmt.order_by(column.is_(None), column.asc(), row_cls.id.asc())


class SqlStore(Store):
    backend = "sql"

    def __init__(self, session_factory: sessionmaker) -> None:
        self._factory = session_factory

    # -- helpers ------------------------------------------------------------

    async def _page(
        self, session: AsyncSession, stmt, row_cls, model: type[M], table: str, options: FindOptions
    ) -> Page[M]:
        total = (
            await session.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar_one()
        stmt = _apply_order(stmt, row_cls, table, options)
        rows = (await session.execute(stmt.offset(options.offset).limit(options.limit))).scalars()
        return Page(items=[_record(model, r) for r in rows], total=total)

    async def _claim_task(
        self, session: AsyncSession, task_id: str, states: frozenset[TaskStatus]
    ) -> bool:
        """Write-lock the task row if it is in one of ``states``."""
        result = await session.execute(
            update(TaskRow)
            .where(TaskRow.id == task_id, TaskRow.status.in_(list(states)))
            .values(status=TaskRow.status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def _require_task(self, session: AsyncSession, task_id: str) -> TaskRow:
        row = await session.get(TaskRow, task_id)
        if row is None:
            raise NotFound("Task not found")
        return row

    async def _reject_pending(
        self, session: AsyncSession, task_id: str, now: datetime, keep: str | None = None
    ) -> list[Bid]:
        stmt = select(BidRow).where(
            BidRow.task_id == task_id, BidRow.status == BidStatus.pending
        )
        if keep is not None:
            stmt = stmt.where(BidRow.id != keep)
        rows = (await session.execute(stmt.order_by(BidRow.created_at, BidRow.id))).scalars().all()
        for row in rows:
            row.status = BidStatus.rejected
            row.updated_at = now
        return [_record(Bid, r) for r in rows]

    async def _read_by(self, session: AsyncSession, message_ids: list[str]) -> dict[str, list[str]]:
        readers: dict[str, list[str]] = defaultdict(list)
        if not message_ids:
            return readers
        rows = (
            await session.execute(
                select(MessageReadRow)
                .where(MessageReadRow.message_id.in_(message_ids))
                .order_by(MessageReadRow.read_at, MessageReadRow.reader_id)
            )
        ).scalars()
        for row in rows:
            readers[row.message_id].append(row.reader_id)
        return readers

    async def _messages(self, session: AsyncSession, rows: list[MessageRow]) -> list[Message]:
        readers = await self._read_by(session, [r.id for r in rows])
        return [_record(Message, r, read_by=readers.get(r.id, [])) for r in rows]

    @staticmethod
    def _conversation(row: ConversationRow) -> Conversation:
        return _record(Conversation, row, participants=row.participant_key.split(","))

    # -- users --------------------------------------------------------------

    async def create_user(self, fields: dict[str, Any]) -> User:
        now = utcnow()
        row = UserRow(
            **{**fields, "email": fields["email"].lower()},
            id=ids.user_id(),
            created_at=now,
            updated_at=now,
        )
        async with self._factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise Conflict("User already exists") from None
            return _record(User, row)

    async def get_user(self, user_id: str) -> User | None:
        async with self._factory() as session:
            row = await session.get(UserRow, user_id)
            return _record(User, row) if row else None

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._factory() as session:
            result = await session.execute(select(UserRow).where(UserRow.email == email.lower()))
            row = result.scalar_one_or_none()
            return _record(User, row) if row else None

    async def get_users(self, user_ids: list[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        async with self._factory() as session:
            result = await session.execute(select(UserRow).where(UserRow.id.in_(set(user_ids))))
            return {r.id: _record(User, r) for r in result.scalars()}

    async def update_user(self, user_id: str, patch: dict[str, Any]) -> User | None:
        async with self._factory() as session:
            row = await session.get(UserRow, user_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.commit()
            return _record(User, row)

    async def refresh_rating(self, user_id: str) -> User | None:
        async with self._factory() as session:
            now = utcnow()
            locked = await session.execute(
                update(UserRow)
                .where(UserRow.id == user_id)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if locked.rowcount == 0:
                await session.rollback()
                return None
            ratings = list(
                (
                    await session.execute(
                        select(ReviewRow.rating).where(ReviewRow.reviewee_id == user_id)
                    )
                ).scalars()
            )
            await session.execute(
                update(UserRow)
                .where(UserRow.id == user_id)
                .values(rating=round_rating(ratings), review_count=len(ratings))
                .execution_options(synchronize_session=False)
            )
            row = (await session.execute(select(UserRow).where(UserRow.id == user_id))).scalar_one()
            user = _record(User, row)
            await session.commit()
            return user

    # -- tasks --------------------------------------------------------------

    async def create_task(self, fields: dict[str, Any]) -> Task:
        now = utcnow()
        row = TaskRow(**fields, id=ids.task_id(), created_at=now, updated_at=now)
        async with self._factory() as session:
            session.add(row)
            await session.commit()
            return _record(Task, row)

    async def get_task(self, task_id: str) -> Task | None:
        async with self._factory() as session:
            row = await session.get(TaskRow, task_id)
            return _record(Task, row) if row else None

    async def get_tasks(self, task_ids: list[str]) -> dict[str, Task]:
        if not task_ids:
            return {}
        async with self._factory() as session:
            result = await session.execute(select(TaskRow).where(TaskRow.id.in_(set(task_ids))))
            return {r.id: _record(Task, r) for r in result.scalars()}

    async def find_tasks(self, filters: dict[str, Any], options: FindOptions) -> Page[Task]:
        stmt = _apply_filters(select(TaskRow), TaskRow, filters)
        if options.search:
            pattern = f"%{_escape_like(options.search.lower())}%"
            stmt = stmt.where(
                or_(
                    func.lower(TaskRow.title).like(pattern, escape="\\"),
                    func.lower(TaskRow.description).like(pattern, escape="\\"),
                )
            )
        async with self._factory() as session:
            return await self._page(session, stmt, TaskRow, Task, "tasks", options)

    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task | None:
        async with self._factory() as session:
            row = await session.get(TaskRow, task_id)
            if row is None:
                return None
            for key, value in patch.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.commit()
            return _record(Task, row)

    async def transition_task(
        self, task_id: str, from_states: frozenset[TaskStatus], patch: dict[str, Any]
    ) -> Task | None:
        async with self._factory() as session:
            result = await session.execute(
                update(TaskRow)
                .where(TaskRow.id == task_id, TaskRow.status.in_(list(from_states)))
                .values(**patch, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            row = (await session.execute(select(TaskRow).where(TaskRow.id == task_id))).scalar_one()
            task = _record(Task, row)
            await session.commit()
            return task

    async def cancel_task(self, task_id: str) -> CancelOutcome:
        async with self._factory() as session:
            if not await self._claim_task(session, task_id, _OPEN_STATES):
                await session.rollback()
                row = await self._require_task(session, task_id)
                raise InvalidState(f"Cannot cancel a task that is already {row.status.value}")
            row = (await session.execute(select(TaskRow).where(TaskRow.id == task_id))).scalar_one()
            previous = _record(Task, row)
            now = utcnow()
            row.status = TaskStatus.cancelled
            row.assigned_to = None
            row.updated_at = now
            rejected = await self._reject_pending(session, task_id, now)
            task = _record(Task, row)
            await session.commit()
            return CancelOutcome(previous=previous, task=task, rejected=rejected)

    async def delete_task(
        self, task_id: str, allowed_states: frozenset[TaskStatus]
    ) -> list[Bid]:
        async with self._factory() as session:
            if not await self._claim_task(session, task_id, allowed_states):
                await session.rollback()
                row = await self._require_task(session, task_id)
                raise InvalidState(f"Task is {row.status.value}, cannot be deleted")
            bids = (
                await session.execute(
                    select(BidRow)
                    .where(BidRow.task_id == task_id)
                    .order_by(BidRow.created_at, BidRow.id)
                )
            ).scalars()
            pending = [_record(Bid, b) for b in bids if b.status == BidStatus.pending]
            await session.execute(delete(BidRow).where(BidRow.task_id == task_id))
            await session.execute(delete(TaskRow).where(TaskRow.id == task_id))
            await session.commit()
            return pending

    # -- bids ---------------------------------------------------------------

    async def place_bid(self, fields: dict[str, Any]) -> Bid:
        task_id = fields["task_id"]
        async with self._factory() as session:
            if not await self._claim_task(session, task_id, frozenset({TaskStatus.open})):
                await session.rollback()
                await self._require_task(session, task_id)
                raise InvalidState("Task is no longer accepting bids")
            now = utcnow()
            row = BidRow(**fields, id=ids.bid_id(), created_at=now, updated_at=now)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await session.scalar(
                    select(BidRow.id).where(
                        BidRow.task_id == task_id,
                        BidRow.bidder_id == fields["bidder_id"],
                        BidRow.status == BidStatus.pending,
                    )
                )
                if existing is None:
                    raise
                raise Conflict("You already have a pending bid for this task") from None
            return _record(Bid, row)

    async def get_bid(self, bid_id: str) -> Bid | None:
        async with self._factory() as session:
            row = await session.get(BidRow, bid_id)
            return _record(Bid, row) if row else None

    async def find_bids(self, filters: dict[str, Any], options: FindOptions) -> Page[Bid]:
        stmt = _apply_filters(select(BidRow), BidRow, filters)
        async with self._factory() as session:
            return await self._page(session, stmt, BidRow, Bid, "bids", options)

    async def accept_bid(self, bid_id: str) -> AcceptOutcome:
        async with self._factory() as session:
            now = utcnow()
            task_open = (
                select(TaskRow.id)
                .where(TaskRow.id == BidRow.task_id, TaskRow.status == TaskStatus.open)
                .correlate(BidRow)
                .exists()
            )
            result = await session.execute(
                update(BidRow)
                .where(BidRow.id == bid_id, BidRow.status == BidStatus.pending, task_open)
                .values(status=BidStatus.accepted, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                bid = await session.get(BidRow, bid_id)
                if bid is None:
                    raise NotFound("Bid not found")
                task = await self._require_task(session, bid.task_id)
                if bid.status != BidStatus.pending:
                    raise InvalidState("Bid is no longer pending")
                raise InvalidState(f"Task is {task.status.value}, not open")

            bid_row = (await session.execute(select(BidRow).where(BidRow.id == bid_id))).scalar_one()
            task_row = (
                await session.execute(select(TaskRow).where(TaskRow.id == bid_row.task_id))
            ).scalar_one()
            task_row.status = TaskStatus.assigned
            task_row.assigned_to = bid_row.bidder_id
            task_row.updated_at = now
            rejected = await self._reject_pending(session, task_row.id, now, keep=bid_id)
            outcome = AcceptOutcome(
                bid=_record(Bid, bid_row), task=_record(Task, task_row), rejected=rejected
            )
            await session.commit()
            return outcome

    async def transition_bid(
        self, bid_id: str, from_status: BidStatus, to_status: BidStatus
    ) -> Bid | None:
        async with self._factory() as session:
            result = await session.execute(
                update(BidRow)
                .where(BidRow.id == bid_id, BidRow.status == from_status)
                .values(status=to_status, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            row = (await session.execute(select(BidRow).where(BidRow.id == bid_id))).scalar_one()
            bid = _record(Bid, row)
            await session.commit()
            return bid

    # -- conversations & messages -------------------------------------------

    async def _find_conversation(
        self, session: AsyncSession, participant_key: str, task_key: str
    ) -> ConversationRow | None:
        result = await session.execute(
            select(ConversationRow).where(
                ConversationRow.participant_key == participant_key,
                ConversationRow.task_key == task_key,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_conversation(
        self, participants: list[str], task_id: str | None
    ) -> tuple[Conversation, bool]:
        members = sorted(set(participants))
        participant_key = ",".join(members)
        task_key = task_id or ""
        async with self._factory() as session:
            row = await self._find_conversation(session, participant_key, task_key)
            if row is not None:
                return self._conversation(row), False
            now = utcnow()
            row = ConversationRow(
                id=ids.conversation_id(),
                participant_key=participant_key,
                task_key=task_key,
                task_id=task_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            for member in members:
                session.add(ConversationMemberRow(conversation_id=row.id, user_id=member))
            try:
                await session.commit()
            except IntegrityError:
                # Lost the race to an identical conversation; use the winner.
                await session.rollback()
                row = await self._find_conversation(session, participant_key, task_key)
                if row is None:
                    raise
                return self._conversation(row), False
            return self._conversation(row), True

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with self._factory() as session:
            row = await session.get(ConversationRow, conversation_id)
            return self._conversation(row) if row else None

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        async with self._factory() as session:
            result = await session.execute(
                select(ConversationRow)
                .join(
                    ConversationMemberRow,
                    ConversationMemberRow.conversation_id == ConversationRow.id,
                )
                .where(ConversationMemberRow.user_id == user_id)
                .order_by(ConversationRow.updated_at.desc(), ConversationRow.id.desc())
            )
            return [self._conversation(r) for r in result.scalars()]

    async def append_message(
        self, conversation_id: str, sender_id: str, content: str, media: list[str]
    ) -> Message:
        mid = ids.message_id()
        async with self._factory() as session:
            now = utcnow()
            result = await session.execute(
                update(ConversationRow)
                .where(ConversationRow.id == conversation_id)
                .values(last_message_id=mid, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise NotFound("Conversation not found")
            row = MessageRow(
                id=mid,
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                media=list(media),
                created_at=now,
            )
            session.add(row)
            await session.commit()
            return _record(Message, row, read_by=[])

    async def get_messages(self, message_ids: list[str]) -> dict[str, Message]:
        if not message_ids:
            return {}
        async with self._factory() as session:
            rows = list(
                (
                    await session.execute(
                        select(MessageRow).where(MessageRow.id.in_(set(message_ids)))
                    )
                ).scalars()
            )
            return {m.id: m for m in await self._messages(session, rows)}

    async def find_messages(self, conversation_id: str, options: FindOptions) -> Page[Message]:
        async with self._factory() as session:
            total = (
                await session.execute(
                    select(func.count(MessageRow.id)).where(
                        MessageRow.conversation_id == conversation_id
                    )
                )
            ).scalar_one()
            rows = list(
                (
                    await session.execute(
                        select(MessageRow)
                        .where(MessageRow.conversation_id == conversation_id)
                        .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
                        .offset(options.offset)
                        .limit(options.limit)
                    )
                ).scalars()
            )
            return Page(items=await self._messages(session, rows), total=total)

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        reads = MessageReadRow.__table__
        async with self._factory() as session:
            unread = select(
                MessageRow.id, literal(reader_id), literal(utcnow(), DateTime)
            ).where(
                MessageRow.conversation_id == conversation_id,
                MessageRow.sender_id != reader_id,
            )
            result = await session.execute(
                insert(reads)
                .prefix_with("OR IGNORE")
                .from_select(["message_id", "reader_id", "read_at"], unread)
            )
            await session.commit()
            return max(result.rowcount, 0)

    async def unread_counts(self, user_id: str) -> dict[str, int]:
        already_read = (
            select(MessageReadRow.message_id)
            .where(
                MessageReadRow.message_id == MessageRow.id,
                MessageReadRow.reader_id == user_id,
            )
            .exists()
        )
        stmt = (
            select(MessageRow.conversation_id, func.count(MessageRow.id))
            .join(
                ConversationMemberRow,
                and_(
                    ConversationMemberRow.conversation_id == MessageRow.conversation_id,
                    ConversationMemberRow.user_id == user_id,
                ),
            )
            .where(MessageRow.sender_id != user_id, ~already_read)
            .group_by(MessageRow.conversation_id)
        )
        async with self._factory() as session:
            result = await session.execute(stmt)
            return {cid: count for cid, count in result.all() if count}

    # -- reviews & payments -------------------------------------------------

    async def create_review(self, fields: dict[str, Any]) -> Review:
        row = ReviewRow(**fields, id=ids.review_id(), created_at=utcnow())
        async with self._factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise Conflict("You have already reviewed this task") from None
            return _record(Review, row)

    async def find_reviews(self, filters: dict[str, Any], options: FindOptions) -> Page[Review]:
        stmt = _apply_filters(select(ReviewRow), ReviewRow, filters)
        async with self._factory() as session:
            return await self._page(session, stmt, ReviewRow, Review, "reviews", options)

    async def create_payment(self, fields: dict[str, Any]) -> tuple[Payment, Task]:
        task_id = fields["task_id"]
        async with self._factory() as session:
            now = utcnow()
            result = await session.execute(
                update(TaskRow)
                .where(
                    TaskRow.id == task_id,
                    TaskRow.assigned_to.is_not(None),
                    TaskRow.status.in_(list(_PAYABLE_STATES)),
                )
                .values(
                    status=TaskStatus.completed,
                    completed_at=func.coalesce(TaskRow.completed_at, now),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                await self._require_task(session, task_id)
                raise InvalidState("Task must be assigned before payment")
            task_row = (
                await session.execute(select(TaskRow).where(TaskRow.id == task_id))
            ).scalar_one()
            row = PaymentRow(
                **fields,
                id=ids.payment_id(),
                payee_id=task_row.assigned_to,
                created_at=now,
                completed_at=now,
            )
            session.add(row)
            task = _record(Task, task_row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise Conflict("Task has already been paid") from None
            logger.debug("Recorded payment %s for task %s", row.id, task_id)
            return _record(Payment, row), task

    async def find_payments(
        self, user_id: str, kind: str, options: FindOptions
    ) -> Page[Payment]:
        if kind == "sent":
            condition = PaymentRow.payer_id == user_id
        elif kind == "received":
            condition = PaymentRow.payee_id == user_id
        else:
            condition = or_(PaymentRow.payer_id == user_id, PaymentRow.payee_id == user_id)
        async with self._factory() as session:
            return await self._page(
                session, select(PaymentRow).where(condition), PaymentRow, Payment, "payments", options
            )
