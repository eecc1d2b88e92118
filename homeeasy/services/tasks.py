"""Task lifecycle: creation, edits, status transitions and deletion.

Status changes go through the store's conditional transitions, so two
callers racing on the same task cannot both succeed. Notifications are sent
only after the store call has returned.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from homeeasy.auth import require_role
from homeeasy.domain import (
    TERMINAL_TASK_STATES,
    Role,
    Task,
    TaskStatus,
    User,
    sources_for,
)
from homeeasy.errors import Forbidden, InvalidArgument, InvalidState, NotFound
from homeeasy.models import TaskCreateRequest, TaskListResponse, TaskResponse, TaskUpdateRequest
from homeeasy.services.views import public_user, task_view
from homeeasy.state import AppState
from homeeasy.storage.base import FindOptions, utcnow

logger = logging.getLogger("homeeasy.tasks")

PROTECTED_FIELDS = frozenset({"status", "posted_by", "assigned_to"})
DELETABLE_STATES = frozenset({TaskStatus.open, TaskStatus.cancelled})
ACTIVE_STATES = frozenset(TaskStatus) - TERMINAL_TASK_STATES


async def _owned_task(services: AppState, task_id: str, caller: User) -> Task:
    task = await services.store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    if task.posted_by != caller.id:
        raise Forbidden("Not your task")
    return task


async def _reload_status(services: AppState, task_id: str) -> str:
    task = await services.store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    return task.status.value


async def create_task(services: AppState, owner: User, req: TaskCreateRequest) -> Task:
    require_role(owner, Role.client, "post tasks")
    task = await services.store.create_task(
        {
            **req.model_dump(),
            "status": TaskStatus.open,
            "posted_by": owner.id,
        }
    )
    logger.info("Task %s created by %s", task.id, owner.id)
    return task


async def get_task(services: AppState, task_id: str) -> TaskResponse:
    task = await services.store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    poster = await services.store.get_user(task.posted_by)
    bids = await services.store.find_bids({"task_id": task_id}, FindOptions(limit=1))
    return task_view(
        task,
        poster=public_user(poster, services.presence) if poster else None,
        bid_count=bids.total,
    )


async def _task_page(services: AppState, filters: dict, options: FindOptions) -> TaskListResponse:
    page = await services.store.find_tasks(filters, options)
    posters = await services.store.get_users([t.posted_by for t in page.items])
    tasks = [
        task_view(
            t,
            poster=public_user(posters[t.posted_by]) if t.posted_by in posters else None,
        )
        for t in page.items
    ]
    return TaskListResponse(tasks=tasks, total=page.total, page=options.page, limit=options.limit)


async def search_tasks(
    services: AppState,
    *,
    category: str | None = None,
    status: str | None = TaskStatus.open.value,
    search: str | None = None,
    sort: str = "created_at",
    order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> TaskListResponse:
    filters: dict = {}
    if category:
        filters["category"] = category
    if status:
        filters["status"] = status
    options = FindOptions(sort=sort, order=order, page=page, limit=limit, search=search or None)
    return await _task_page(services, filters, options)


async def list_my_tasks(
    services: AppState, owner: User, status: str | None = None, page: int = 1, limit: int = 20
) -> TaskListResponse:
    filters: dict = {"posted_by": owner.id}
    if status:
        filters["status"] = status
    return await _task_page(services, filters, FindOptions(page=page, limit=limit))


async def list_assigned_tasks(
    services: AppState, tasker: User, status: str | None = None, page: int = 1, limit: int = 20
) -> TaskListResponse:
    filters: dict = {"assigned_to": tasker.id}
    if status:
        filters["status"] = status
    return await _task_page(services, filters, FindOptions(page=page, limit=limit))


async def update_task(services: AppState, task_id: str, caller: User, patch: dict) -> Task:
    await _owned_task(services, task_id, caller)

    protected = PROTECTED_FIELDS.intersection(patch)
    if protected:
        raise InvalidArgument(f"Cannot modify {', '.join(sorted(protected))} through an update")
    try:
        validated = TaskUpdateRequest.model_validate(patch)
    except ValidationError:
        raise InvalidArgument("Invalid request body") from None

    changes = validated.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidArgument("Nothing to update")

    task = await services.store.transition_task(task_id, ACTIVE_STATES, changes)
    if task is None:
        status = await _reload_status(services, task_id)
        raise InvalidState(f"Task is {status} and can no longer be edited")
    return task


async def start_task(services: AppState, task_id: str, caller: User) -> Task:
    task = await services.store.get_task(task_id)
    if task is None:
        raise NotFound("Task not found")
    if task.assigned_to != caller.id:
        raise Forbidden("Only the assigned tasker can start this task")

    started = await services.store.transition_task(
        task_id, sources_for(TaskStatus.in_progress), {"status": TaskStatus.in_progress}
    )
    if started is None:
        status = await _reload_status(services, task_id)
        raise InvalidState(f"Task is {status}, not assigned")

    logger.info("Task %s started by %s", task_id, caller.id)
    services.notifier.emit_to_user(
        started.posted_by,
        "task_started_notification",
        {
            "task_id": task_id,
            "task_title": started.title,
            "tasker_id": caller.id,
            "tasker_name": caller.display_name,
        },
    )
    return started


async def complete_task(services: AppState, task_id: str, caller: User) -> Task:
    await _owned_task(services, task_id, caller)

    completed = await services.store.transition_task(
        task_id,
        sources_for(TaskStatus.completed),
        {"status": TaskStatus.completed, "completed_at": utcnow()},
    )
    if completed is None:
        status = await _reload_status(services, task_id)
        raise InvalidState(f"Task is {status}; only assigned or in-progress tasks can be completed")

    logger.info("Task %s completed", task_id)
    if completed.assigned_to:
        services.notifier.emit_to_user(
            completed.assigned_to,
            "task_completed_notification",
            {"task_id": task_id, "task_title": completed.title},
        )
    return completed


async def cancel_task(services: AppState, task_id: str, caller: User) -> Task:
    await _owned_task(services, task_id, caller)
    outcome = await services.store.cancel_task(task_id)
    task = outcome.task
    logger.info(
        "Task %s cancelled, %d pending bids rejected", task_id, len(outcome.rejected)
    )

    if outcome.previous.assigned_to:
        services.notifier.emit_to_user(
            outcome.previous.assigned_to,
            "task_cancelled_notification",
            {
                "reason": "assigned_task_cancelled",
                "task_id": task_id,
                "task_title": task.title,
                "message": "A task you were assigned to has been cancelled by the client.",
            },
        )
    for bid in outcome.rejected:
        _notify_bid_cancelled(services, task, bid.bidder_id, bid.id, bid.amount)
    return task


async def delete_task(services: AppState, task_id: str, caller: User) -> None:
    task = await _owned_task(services, task_id, caller)
    pending = await services.store.delete_task(task_id, DELETABLE_STATES)
    logger.info("Task %s deleted, %d pending bids dropped", task_id, len(pending))
    for bid in pending:
        _notify_bid_cancelled(services, task, bid.bidder_id, bid.id, bid.amount)


def _notify_bid_cancelled(
    services: AppState, task: Task, bidder_id: str, bid_id: str, amount: float
) -> None:
    services.notifier.emit_to_user(
        bidder_id,
        "task_cancelled_notification",
        {
            "reason": "bid_rejected_due_to_cancellation",
            "task_id": task.id,
            "task_title": task.title,
            "bid_id": bid_id,
            "bid_amount": amount,
            "message": (
                f'The task "{task.title}" has been cancelled by the client. '
                "Your bid has been automatically rejected."
            ),
        },
    )
