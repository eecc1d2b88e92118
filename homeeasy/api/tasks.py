"""Task lifecycle routes."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response

from homeeasy.auth import AuthUser
from homeeasy.config import settings
from homeeasy.content import parse_body, parse_model, render_response
from homeeasy.domain import TaskCategory, TaskStatus, User
from homeeasy.models import ErrorResponse, TaskCreateRequest, TaskListResponse, TaskResponse
from homeeasy.rate_limit import limiter
from homeeasy.services.tasks import (
    cancel_task,
    complete_task,
    create_task,
    delete_task,
    get_task,
    list_assigned_tasks,
    list_my_tasks,
    search_tasks,
    start_task,
    update_task,
)
from homeeasy.services.views import task_view
from homeeasy.state import AppState, Services

router = APIRouter()

_TASK_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.post(
    "/v1/tasks",
    response_model=TaskResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_create)
async def post_task(request: Request, user: User = AuthUser, services: AppState = Services):
    """Post a new open task. Only clients can post tasks."""
    req = await parse_model(request, TaskCreateRequest)
    task = await create_task(services, user, req)
    return render_response(
        request, task_view(task), status_code=201, headers={"X-Task-Id": task.id}
    )


@router.get("/v1/tasks", response_model=TaskListResponse)
@limiter.limit(settings.rate_limit_read)
async def browse_tasks(
    request: Request,
    services: AppState = Services,
    category: TaskCategory | None = None,
    status: TaskStatus | None = TaskStatus.open,
    search: str | None = Query(None, max_length=200),
    sort: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    """Search tasks. Defaults to open tasks, newest first."""
    result = await search_tasks(
        services,
        category=category,
        status=status,
        search=search,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )
    return render_response(request, result)


@router.get("/v1/tasks/mine", response_model=TaskListResponse)
@limiter.limit(settings.rate_limit_read)
async def my_tasks(
    request: Request,
    user: User = AuthUser,
    services: AppState = Services,
    status: TaskStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await list_my_tasks(services, user, status=status, page=page, limit=limit)
    return render_response(request, result)


@router.get("/v1/tasks/assigned", response_model=TaskListResponse)
@limiter.limit(settings.rate_limit_read)
async def assigned_tasks(
    request: Request,
    user: User = AuthUser,
    services: AppState = Services,
    status: TaskStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    result = await list_assigned_tasks(services, user, status=status, page=page, limit=limit)
    return render_response(request, result)


@router.get("/v1/tasks/{task_id}", response_model=TaskResponse, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def task_detail(request: Request, task_id: str, services: AppState = Services):
    return render_response(request, await get_task(services, task_id))


@router.patch("/v1/tasks/{task_id}", response_model=TaskResponse, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def edit_task(
    request: Request, task_id: str, user: User = AuthUser, services: AppState = Services
):
    """Edit the descriptive fields of a task you posted."""
    body = await parse_body(request)
    task = await update_task(services, task_id, user, body)
    return render_response(request, task_view(task))


@router.post("/v1/tasks/{task_id}/start", response_model=TaskResponse, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def start(
    request: Request, task_id: str, user: User = AuthUser, services: AppState = Services
):
    """The assigned tasker starts work on the task."""
    task = await start_task(services, task_id, user)
    return render_response(request, task_view(task))


@router.post("/v1/tasks/{task_id}/complete", response_model=TaskResponse, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def complete(
    request: Request, task_id: str, user: User = AuthUser, services: AppState = Services
):
    task = await complete_task(services, task_id, user)
    return render_response(request, task_view(task))


@router.post("/v1/tasks/{task_id}/cancel", response_model=TaskResponse, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def cancel(
    request: Request, task_id: str, user: User = AuthUser, services: AppState = Services
):
    """Cancel a task you posted. Pending bids are rejected."""
    task = await cancel_task(services, task_id, user)
    return render_response(request, task_view(task))


@router.delete("/v1/tasks/{task_id}", status_code=204, responses=_TASK_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def remove_task(
    request: Request, task_id: str, user: User = AuthUser, services: AppState = Services
):
    """Delete an open or cancelled task together with its bids."""
    await delete_task(services, task_id, user)
    return Response(status_code=204)
