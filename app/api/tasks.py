"""Task API endpoints."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.core.auth import verify_api_key
from app.core.errors import NotFoundError, ValidationError
from app.services import SandboxRegistry, TaskService, sandbox_registry

router = APIRouter()

AgentName = Literal["claude", "codex", "cursor", "gemini", "opencode"]


def get_sandbox_registry() -> SandboxRegistry:
    """Registry dependency, overridable in tests."""
    return sandbox_registry


class TaskCreate(BaseModel):
    """Request model for creating a task."""

    prompt: str
    repository_url: str | None = None
    selected_agent: AgentName = "claude"
    selected_model: str | None = None
    install_dependencies: bool = False
    max_duration: int = Field(default=5, ge=1)
    parent_task_id: UUID | None = None


class TaskResponse(BaseModel):
    """Response model for task data."""

    id: UUID
    prompt: str
    repository_url: str
    selected_agent: str
    selected_model: str | None
    install_dependencies: bool
    max_duration: int
    status: str
    progress: int
    error: str | None
    branch_name: str | None
    sandbox_url: str | None
    sandbox_id: str | None
    parent_task_id: UUID | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class TaskListResponse(BaseModel):
    """Response model for list of tasks."""

    tasks: list[TaskResponse]
    total: int
    limit: int
    offset: int


class TaskLogResponse(BaseModel):
    """Response model for a task log entry."""

    id: int
    type: str
    message: str
    created_at: datetime

    model_config = {"from_attributes": True}


class TaskLogListResponse(BaseModel):
    """Response model for list of task logs."""

    logs: list[TaskLogResponse]
    total: int
    limit: int
    offset: int


class TaskActionResponse(BaseModel):
    """Response model for stop and bulk-delete requests."""

    message: str
    deleted: int | None = None


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(task_data: TaskCreate, api_key: str = Depends(verify_api_key)):
    """Create a new task. Processing starts in the background."""
    try:
        task = TaskService.create_task(
            prompt=task_data.prompt,
            repository_url=task_data.repository_url,
            selected_agent=task_data.selected_agent,
            selected_model=task_data.selected_model,
            install_dependencies=task_data.install_dependencies,
            max_duration=task_data.max_duration,
            parent_task_id=task_data.parent_task_id,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e

    return TaskResponse.model_validate(task)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: UUID, api_key: str = Depends(verify_api_key)):
    """Get a task by ID."""
    try:
        task = TaskService.get_task_by_id(task_id)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e

    return TaskResponse.model_validate(task)


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    limit: int = 100, offset: int = 0, api_key: str = Depends(verify_api_key)
):
    """List all tasks with pagination."""
    tasks, total = TaskService.list_tasks(limit=limit, offset=offset)

    return TaskListResponse(
        tasks=[TaskResponse.model_validate(task) for task in tasks],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/tasks/{task_id}/logs", response_model=TaskLogListResponse)
def get_task_logs(
    task_id: UUID,
    limit: int = 100,
    offset: int = 0,
    api_key: str = Depends(verify_api_key),
):
    """Get logs for a task in generation order, with pagination."""
    try:
        logs, total = TaskService.get_task_logs(task_id, limit=limit, offset=offset)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e

    return TaskLogListResponse(
        logs=[TaskLogResponse.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/tasks/{task_id}/stop", response_model=TaskActionResponse)
def stop_task(
    task_id: UUID,
    api_key: str = Depends(verify_api_key),
    registry: SandboxRegistry = Depends(get_sandbox_registry),
):
    """Stop a running task and tear down its sandbox."""
    try:
        result = TaskService.stop_task(task_id, registry=registry)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.message,
        )
    return TaskActionResponse(message=result.message)


@router.delete("/tasks", response_model=TaskActionResponse)
def delete_tasks(
    action: str = Query(..., description="Comma-separated: completed,failed,stopped"),
    api_key: str = Depends(verify_api_key),
):
    """Bulk-delete tasks by status."""
    try:
        message, deleted = TaskService.delete_tasks_by_status(action.split(","))
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    return TaskActionResponse(message=message, deleted=deleted)
