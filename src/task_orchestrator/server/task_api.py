"""Task API endpoints.

This module provides a FastAPI router with task CRUD and manual dispatch.
It is mounted under ``/api/tasks`` by the main ``create_app`` factory.
"""

from __future__ import annotations

from typing import Any, Callable, Literal, Optional

from fastapi import APIRouter, Query
from loguru import logger
from pydantic import BaseModel, Field

from ..orchestrator.service import OrchestratorService

TaskTypeName = Literal["requirement", "design", "implementation", "test", "deployment", "review"]
PriorityName = Literal["critical", "high", "medium", "low"]
StatusName = Literal["pending", "assigned", "in_progress", "completed", "failed"]


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    description: str = Field(min_length=1)
    title: Optional[str] = None
    task_type: TaskTypeName = "implementation"
    priority: PriorityName = "medium"
    project_id: Optional[str] = None
    dependencies: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    task_type: Optional[TaskTypeName] = None
    priority: Optional[PriorityName] = None
    status: Optional[StatusName] = None
    dependencies: Optional[list[str]] = None
    metadata: Optional[dict[str, Any]] = None


class TaskResponse(BaseModel):
    """Standard wrapper for task responses."""
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


class ExecuteResponse(BaseModel):
    task: dict[str, Any]
    response: dict[str, Any]


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_task_router(get_service: Callable[[], OrchestratorService]) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_service:
        A callable returning the :class:`OrchestratorService` serving the
        request.
    """
    router = APIRouter(prefix="/api/tasks", tags=["tasks"])

    @router.get("", response_model=TaskListResponse)
    async def list_tasks(
        status: Optional[str] = Query(None),
        task_type: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        project_id: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
    ) -> TaskListResponse:
        tasks = get_service().engine.list_tasks(
            status=status,
            task_type=task_type,
            priority=priority,
            project_id=project_id,
            search=search,
        )
        data = [t.to_dict() for t in tasks]
        return TaskListResponse(tasks=data, total=len(data))

    @router.post("", response_model=TaskResponse, status_code=201)
    async def create_task(body: CreateTaskRequest) -> TaskResponse:
        payload = body.model_dump()
        task = get_service().engine.create_task(payload.pop("description"), **payload)
        return TaskResponse(task=task.to_dict())

    @router.get("/{task_id}", response_model=TaskResponse)
    async def get_task(task_id: str) -> TaskResponse:
        return TaskResponse(task=get_service().engine.get_task(task_id).to_dict())

    @router.patch("/{task_id}", response_model=TaskResponse)
    async def update_task(task_id: str, body: UpdateTaskRequest) -> TaskResponse:
        changes = body.model_dump(exclude_unset=True)
        task = get_service().engine.update_task(task_id, changes)
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    async def delete_task(task_id: str) -> dict[str, Any]:
        get_service().engine.delete_task(task_id)
        return {"deleted": True, "task_id": task_id}

    @router.post("/{task_id}/execute", response_model=ExecuteResponse)
    async def execute_task(task_id: str) -> ExecuteResponse:
        service = get_service()
        logger.info("Manual dispatch requested for task {}", task_id)
        response = await service.dispatch_task(task_id)
        return ExecuteResponse(task=service.engine.get_task(task_id).to_dict(), response=response.to_dict())

    return router
