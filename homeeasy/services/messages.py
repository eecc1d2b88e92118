"""Conversations, messages, read receipts and unread counts."""

from __future__ import annotations

import logging

from homeeasy.domain import Conversation, User
from homeeasy.errors import Forbidden, InvalidArgument, NotFound
from homeeasy.models import (
    ConversationResponse,
    MessageListResponse,
    MessageResponse,
    UnreadCountResponse,
)
from homeeasy.services.views import message_view, public_user, task_summary
from homeeasy.state import AppState
from homeeasy.storage.base import FindOptions

logger = logging.getLogger("homeeasy.messages")

MAX_CONTENT_LENGTH = 1000
MAX_MEDIA = 5


async def require_participant(
    services: AppState, conversation_id: str, user_id: str
) -> Conversation:
    conversation = await services.store.get_conversation(conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    if user_id not in conversation.participants:
        raise Forbidden("You are not a participant in this conversation")
    return conversation


async def _conversation_views(
    services: AppState, user_id: str, conversations: list[Conversation]
) -> list[ConversationResponse]:
    user_ids = {uid for c in conversations for uid in c.participants}
    users = await services.store.get_users(list(user_ids))
    last_ids = [c.last_message_id for c in conversations if c.last_message_id]
    messages = await services.store.get_messages(last_ids)
    tasks = await services.store.get_tasks([c.task_id for c in conversations if c.task_id])
    unread = await services.store.unread_counts(user_id)

    views = []
    for c in conversations:
        last = messages.get(c.last_message_id) if c.last_message_id else None
        views.append(
            ConversationResponse(
                id=c.id,
                participants=[
                    public_user(users[uid], services.presence)
                    for uid in c.participants
                    if uid in users
                ],
                task_id=c.task_id,
                task=task_summary(tasks[c.task_id]) if c.task_id in tasks else None,
                last_message=message_view(last) if last else None,
                unread_count=unread.get(c.id, 0),
                created_at=c.created_at,
                updated_at=c.updated_at,
            )
        )
    return views


async def list_conversations(services: AppState, caller: User) -> list[ConversationResponse]:
    conversations = await services.store.list_conversations(caller.id)
    return await _conversation_views(services, caller.id, conversations)


async def get_or_create_conversation(
    services: AppState, caller: User, other_id: str, task_id: str | None = None
) -> tuple[ConversationResponse, bool]:
    if other_id == caller.id:
        raise InvalidArgument("Cannot start a conversation with yourself")
    if await services.store.get_user(other_id) is None:
        raise NotFound("User not found")
    if task_id is not None and await services.store.get_task(task_id) is None:
        raise NotFound("Task not found")

    conversation, created = await services.store.get_or_create_conversation(
        [caller.id, other_id], task_id
    )
    if created:
        logger.info("Conversation %s opened by %s", conversation.id, caller.id)
    views = await _conversation_views(services, caller.id, [conversation])
    return views[0], created


async def post_message(
    services: AppState,
    conversation_id: str,
    sender: User,
    content: str | None = None,
    media: list[str] | None = None,
) -> MessageResponse:
    conversation = await require_participant(services, conversation_id, sender.id)

    text = (content or "").strip()
    media = list(media or [])
    if not text and not media:
        raise InvalidArgument("Message content or media is required")
    if len(text) > MAX_CONTENT_LENGTH:
        raise InvalidArgument(f"Message content cannot exceed {MAX_CONTENT_LENGTH} characters")
    if len(media) > MAX_MEDIA:
        raise InvalidArgument(f"At most {MAX_MEDIA} media attachments are allowed")

    message = await services.store.append_message(conversation_id, sender.id, text, media)
    view = message_view(message)
    payload = view.model_dump(mode="json")

    services.notifier.emit_to_conversation(conversation_id, "new_message", payload)
    for participant in conversation.participants:
        if participant != sender.id:
            services.notifier.emit_to_user(
                participant,
                "message_notification",
                {
                    "conversation_id": conversation_id,
                    "message": payload,
                    "sender_name": sender.display_name,
                },
            )
    return view


async def list_messages(
    services: AppState, conversation_id: str, caller: User, page: int = 1, limit: int = 50
) -> MessageListResponse:
    await require_participant(services, conversation_id, caller.id)
    await services.store.mark_read(conversation_id, caller.id)
    result = await services.store.find_messages(
        conversation_id, FindOptions(page=page, limit=limit)
    )
    # Pages are cut newest-first but returned in reading order.
    messages = [message_view(m) for m in reversed(result.items)]
    return MessageListResponse(messages=messages, total=result.total, page=page, limit=limit)


async def mark_read(services: AppState, conversation_id: str, caller: User) -> dict:
    await require_participant(services, conversation_id, caller.id)
    marked = await services.store.mark_read(conversation_id, caller.id)
    return {"conversation_id": conversation_id, "marked": marked}


async def unread_count(services: AppState, caller: User) -> UnreadCountResponse:
    counts = await services.store.unread_counts(caller.id)
    counts = {cid: n for cid, n in counts.items() if n > 0}
    return UnreadCountResponse(count=sum(counts.values()), conversation_counts=counts)
