"""Conversation and message routes."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from homeeasy.auth import AuthUser
from homeeasy.config import settings
from homeeasy.content import parse_model, render_response
from homeeasy.domain import User
from homeeasy.models import (
    ConversationRequest,
    ConversationResponse,
    ErrorResponse,
    MessageListResponse,
    MessageRequest,
    MessageResponse,
    UnreadCountResponse,
)
from homeeasy.rate_limit import limiter
from homeeasy.services.messages import (
    get_or_create_conversation,
    list_conversations,
    list_messages,
    mark_read,
    post_message,
    unread_count,
)
from homeeasy.state import AppState, Services

router = APIRouter()

_CONVERSATION_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.get("/v1/conversations")
@limiter.limit(settings.rate_limit_read)
async def conversations(request: Request, user: User = AuthUser, services: AppState = Services):
    """Your conversations, most recently active first."""
    result = await list_conversations(services, user)
    return render_response(request, {"conversations": result, "total": len(result)})


@router.post(
    "/v1/conversations", response_model=ConversationResponse, responses=_CONVERSATION_ERRORS
)
@limiter.limit(settings.rate_limit_message)
async def open_conversation(
    request: Request, user: User = AuthUser, services: AppState = Services
):
    """Find the conversation with another user (optionally about a task), or start one."""
    req = await parse_model(request, ConversationRequest)
    conversation, created = await get_or_create_conversation(
        services, user, req.participant_id, req.task_id
    )
    return render_response(request, conversation, status_code=201 if created else 200)


@router.get("/v1/conversations/unread-count", response_model=UnreadCountResponse)
@limiter.limit(settings.rate_limit_read)
async def unread(request: Request, user: User = AuthUser, services: AppState = Services):
    return render_response(request, await unread_count(services, user))


@router.get(
    "/v1/conversations/{conversation_id}/messages",
    response_model=MessageListResponse,
    responses=_CONVERSATION_ERRORS,
)
@limiter.limit(settings.rate_limit_read)
async def messages(
    request: Request,
    conversation_id: str,
    user: User = AuthUser,
    services: AppState = Services,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.message_page_size, ge=1, le=settings.max_page_size),
):
    """A page of messages in reading order; marks them as read for you."""
    result = await list_messages(services, conversation_id, user, page=page, limit=limit)
    return render_response(request, result)


@router.post(
    "/v1/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    responses=_CONVERSATION_ERRORS,
)
@limiter.limit(settings.rate_limit_message)
async def send(
    request: Request, conversation_id: str, user: User = AuthUser, services: AppState = Services
):
    req = await parse_model(request, MessageRequest, body_field="content")
    message = await post_message(services, conversation_id, user, req.content, req.media)
    return render_response(request, message, status_code=201)


@router.post("/v1/conversations/{conversation_id}/read", responses=_CONVERSATION_ERRORS)
@limiter.limit(settings.rate_limit_message)
async def read(
    request: Request, conversation_id: str, user: User = AuthUser, services: AppState = Services
):
    return render_response(request, await mark_read(services, conversation_id, user))
