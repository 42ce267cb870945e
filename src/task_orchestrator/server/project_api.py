"""Project API endpoints: CRUD, decomposition and refinement.

Mounted under ``/api/projects`` by ``create_app``.
"""

from __future__ import annotations

from typing import Any, Callable, Literal, Optional

from fastapi import APIRouter
from loguru import logger
from pydantic import BaseModel, Field

from ..orchestrator.service import OrchestratorService
from ..task_engine.engine import Refinement
from .task_api import PriorityName, TaskListResponse, TaskTypeName


class CreateProjectRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    prd: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    prd: Optional[str] = None
    status: Optional[Literal["planning", "active", "completed", "cancelled"]] = None
    metadata: Optional[dict[str, Any]] = None


class TaskTemplateModel(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    task_type: TaskTypeName = "implementation"
    priority: PriorityName = "medium"
    estimated_hours: Optional[float] = None
    skills: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class DependencyEdgeModel(BaseModel):
    model_config = {"populate_by_name": True}

    from_id: str = Field(alias="from")
    to: str


class RefineRequest(BaseModel):
    tasks_to_add: list[TaskTemplateModel] = Field(default_factory=list)
    tasks_to_remove: list[str] = Field(default_factory=list)
    dependencies_to_add: list[DependencyEdgeModel] = Field(default_factory=list)
    dependencies_to_remove: list[DependencyEdgeModel] = Field(default_factory=list)


class ProjectResponse(BaseModel):
    project: dict[str, Any]


class ProjectListResponse(BaseModel):
    projects: list[dict[str, Any]]
    total: int


class DecomposeResponse(BaseModel):
    project: dict[str, Any]
    tasks: list[dict[str, Any]]
    total: int


class RefineResponse(BaseModel):
    project: dict[str, Any]
    summary: dict[str, Any]


def create_project_router(get_service: Callable[[], OrchestratorService]) -> APIRouter:
    router = APIRouter(prefix="/api/projects", tags=["projects"])

    @router.get("", response_model=ProjectListResponse)
    async def list_projects() -> ProjectListResponse:
        data = [p.to_dict() for p in get_service().engine.list_projects()]
        return ProjectListResponse(projects=data, total=len(data))

    @router.post("", response_model=ProjectResponse, status_code=201)
    async def create_project(body: CreateProjectRequest) -> ProjectResponse:
        project = get_service().engine.create_project(**body.model_dump())
        return ProjectResponse(project=project.to_dict())

    @router.get("/{project_id}", response_model=ProjectResponse)
    async def get_project(project_id: str) -> ProjectResponse:
        return ProjectResponse(project=get_service().engine.get_project(project_id).to_dict())

    @router.patch("/{project_id}", response_model=ProjectResponse)
    async def update_project(project_id: str, body: UpdateProjectRequest) -> ProjectResponse:
        project = get_service().engine.update_project(project_id, body.model_dump(exclude_unset=True))
        return ProjectResponse(project=project.to_dict())

    @router.delete("/{project_id}")
    async def delete_project(project_id: str) -> dict[str, Any]:
        get_service().engine.delete_project(project_id)
        return {"deleted": True, "project_id": project_id}

    @router.get("/{project_id}/tasks", response_model=TaskListResponse)
    async def project_tasks(project_id: str) -> TaskListResponse:
        data = [t.to_dict() for t in get_service().engine.project_tasks(project_id)]
        return TaskListResponse(tasks=data, total=len(data))

    @router.get("/{project_id}/requirements")
    async def project_requirements(project_id: str) -> dict[str, Any]:
        project = get_service().engine.get_project(project_id)
        return {"requirements": [r.to_dict() for r in project.requirements]}

    @router.get("/{project_id}/milestones")
    async def project_milestones(project_id: str) -> dict[str, Any]:
        project = get_service().engine.get_project(project_id)
        return {"milestones": [m.to_dict() for m in project.milestones]}

    @router.post("/{project_id}/decompose", response_model=DecomposeResponse)
    async def decompose_project(project_id: str) -> DecomposeResponse:
        service = get_service()
        logger.info("Decomposition requested for project {}", project_id)
        tasks = await service.decompose_project(project_id)
        data = [t.to_dict() for t in tasks]
        return DecomposeResponse(
            project=service.engine.get_project(project_id).to_dict(),
            tasks=data,
            total=len(data),
        )

    @router.post("/{project_id}/decompose/refine", response_model=RefineResponse)
    async def refine_project(project_id: str, body: RefineRequest) -> RefineResponse:
        service = get_service()
        refinement = Refinement.from_dict(
            {
                "tasks_to_add": [t.model_dump() for t in body.tasks_to_add],
                "tasks_to_remove": body.tasks_to_remove,
                "dependencies_to_add": [e.model_dump(by_alias=True) for e in body.dependencies_to_add],
                "dependencies_to_remove": [e.model_dump(by_alias=True) for e in body.dependencies_to_remove],
            }
        )
        summary = service.refine_project(project_id, refinement)
        return RefineResponse(project=service.engine.get_project(project_id).to_dict(), summary=summary)

    return router
