"""Task engine: CRUD and project operations that announce events.

This is the entry-point for task and project manipulation from the API and
the orchestrator.  It wraps :class:`TaskStore` with id lookups that raise
typed errors, title generation, decomposition bookkeeping and refinement.
Status changes made by the dispatch pipeline bypass the engine and go
straight to :meth:`TaskStore.try_transition`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..constants import TITLE_MAX_CHARS
from ..errors import ProjectNotFound, TaskConflict, TaskNotFound, ValidationFailure
from ..events.bus import EventBus, EventType
from .decomposition import derive_milestones, derive_requirements, estimate_project_duration, identify_risk_factors
from .model import Project, ProjectStatus, Task, TaskPriority, TaskStatus, TaskType, coerce_enum, now_iso
from .store import TaskStore

logger = logging.getLogger(__name__)

# Held by an agent until it reports back.
_ACTIVE_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


def _ensure_removable(task: Task) -> None:
    if task.status in _ACTIVE_STATUSES:
        raise TaskConflict(task.id, task.status.value, action="deleted")


def generate_title(text: str) -> str:
    """First line of *text*, truncated to the title limit."""
    first = (text or "").strip().split("\n", 1)[0].strip()
    if len(first) > TITLE_MAX_CHARS:
        return first[:TITLE_MAX_CHARS] + "..."
    return first


# ---------------------------------------------------------------------------
# Refinement input
# ---------------------------------------------------------------------------

@dataclass
class TaskTemplate:
    """A task to add during refinement; dependencies name other tasks by title."""

    title: str
    description: str = ""
    task_type: TaskType = TaskType.IMPLEMENTATION
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[float] = None
    skills: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskTemplate":
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationFailure("Refinement task templates require a title")
        return cls(
            title=title,
            description=str(data.get("description") or ""),
            task_type=coerce_enum(TaskType, data.get("task_type") or data.get("type"), TaskType.IMPLEMENTATION),
            priority=coerce_enum(TaskPriority, data.get("priority"), TaskPriority.MEDIUM),
            estimated_hours=data.get("estimated_hours"),
            skills=[str(s) for s in data.get("skills") or []],
            dependencies=[str(d) for d in data.get("dependencies") or []],
        )


@dataclass
class DependencyEdge:
    """``to`` depends on ``from_id``."""

    from_id: str
    to: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyEdge":
        from_id = data.get("from", data.get("from_id"))
        to = data.get("to")
        if not from_id or not to:
            raise ValidationFailure("Dependency edges require both 'from' and 'to'")
        return cls(from_id=str(from_id), to=str(to))


@dataclass
class Refinement:
    tasks_to_add: list[TaskTemplate] = field(default_factory=list)
    tasks_to_remove: list[str] = field(default_factory=list)
    dependencies_to_add: list[DependencyEdge] = field(default_factory=list)
    dependencies_to_remove: list[DependencyEdge] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Refinement":
        return cls(
            tasks_to_add=[TaskTemplate.from_dict(t) for t in data.get("tasks_to_add") or []],
            tasks_to_remove=[str(t) for t in data.get("tasks_to_remove") or []],
            dependencies_to_add=[DependencyEdge.from_dict(e) for e in data.get("dependencies_to_add") or []],
            dependencies_to_remove=[DependencyEdge.from_dict(e) for e in data.get("dependencies_to_remove") or []],
        )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TaskEngine:
    """Manage tasks and projects in the store and announce every change.

    Parameters
    ----------
    store:
        The shared :class:`TaskStore`.
    bus:
        Event bus receiving ``task:*`` and ``project:*`` events.
    """

    def __init__(self, store: TaskStore, bus: EventBus) -> None:
        self.store = store
        self.bus = bus

    def _emit_task(self, event_type: EventType, task: Task, **extra: Any) -> None:
        self.bus.emit(event_type, task.id, {"task": task.to_dict(), **extra})

    def _emit_project(self, event_type: EventType, project: Project, **extra: Any) -> None:
        self.bus.emit(event_type, project.id, {"project": project.to_dict(), **extra})

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        description: str,
        *,
        title: Optional[str] = None,
        task_type: Any = None,
        priority: Any = None,
        project_id: Optional[str] = None,
        dependencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        enqueue: bool = True,
    ) -> Task:
        """Create a task, attach it to its project and (by default) queue it."""
        task = Task(
            project_id=project_id,
            title=(title or "").strip() or generate_title(description),
            description=description,
            task_type=coerce_enum(TaskType, task_type, TaskType.IMPLEMENTATION),
            priority=coerce_enum(TaskPriority, priority, TaskPriority.MEDIUM),
            dependencies=list(dependencies or []),
            metadata=dict(metadata or {}),
        )
        with self.store.transaction() as tx:
            project = None
            if project_id is not None:
                project = tx.get_project(project_id)
                if project is None:
                    raise ProjectNotFound(project_id)
            tx.add(task)
            if project is not None:
                project.task_ids.append(task.id)
                project.touch()
            if enqueue:
                tx.enqueue(task.id)

        logger.info("Created task %s: %s", task.id, task.title)
        self._emit_task(EventType.TASK_CREATED, task)
        return task

    def get_task(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def list_tasks(self, **filters: Any) -> list[Task]:
        return self.store.list_tasks(**filters)

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        task = self.store.update_task(task_id, changes)
        if task is None:
            raise TaskNotFound(task_id)
        self._emit_task(EventType.TASK_UPDATED, task, fields=sorted(changes.keys()))
        return task

    def delete_task(self, task_id: str) -> None:
        """Remove a task from the store, its project and the queue.

        Dependents keep the dangling id and stay unschedulable.  A task that
        is assigned or in progress cannot be deleted.
        """
        with self.store.transaction() as tx:
            task = tx.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            _ensure_removable(task)
            tx.remove(task_id)
        self._emit_task(EventType.TASK_DELETED, task)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        name: str,
        description: str = "",
        prd: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Project:
        project = Project(name=name, description=description, prd=prd or None, metadata=dict(metadata or {}))
        self.store.add_project(project)
        logger.info("Created project %s: %s", project.id, name)
        self._emit_project(EventType.PROJECT_CREATED, project)
        return project

    def get_project(self, project_id: str) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    def project_tasks(self, project_id: str) -> list[Task]:
        """Tasks attached to the project, in the project's order."""
        project = self.get_project(project_id)
        tasks = []
        for tid in project.task_ids:
            task = self.store.get_task(tid)
            if task is not None:
                tasks.append(task)
        return tasks

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Project:
        changes = dict(changes)
        if "status" in changes:
            status = coerce_enum(ProjectStatus, changes["status"], None)
            if status is None:
                raise ValidationFailure(f"Unknown project status: {changes['status']!r}")
            changes["status"] = status
        project = self.store.update_project(project_id, changes)
        if project is None:
            raise ProjectNotFound(project_id)
        self._emit_project(EventType.PROJECT_UPDATED, project)
        return project

    def delete_project(self, project_id: str) -> None:
        """Delete a project together with the tasks it owns."""
        with self.store.transaction() as tx:
            project = tx.get_project(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            for tid in project.task_ids:
                owned = tx.get(tid)
                if owned is not None:
                    _ensure_removable(owned)
            removed = [tid for tid in list(project.task_ids) if tx.remove(tid)]
        self.store.delete_project(project_id)
        logger.info("Deleted project %s with %d task(s)", project_id, len(removed))
        self._emit_project(EventType.PROJECT_DELETED, project, deleted_task_ids=removed)

    # ------------------------------------------------------------------
    # Decomposition
    # ------------------------------------------------------------------

    def apply_decomposition(self, project_id: str, tasks: list[Task]) -> list[Task]:
        """Store parsed tasks and make them the project's task list.

        Requirements, milestones and the schedule metadata are replaced
        wholesale and the project becomes ``active``.
        """
        with self.store.transaction() as tx:
            project = tx.get_project(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            for task in tasks:
                task.project_id = project_id
                tx.add(task)
                tx.enqueue(task.id)
            requirements = derive_requirements(tasks)
            metadata = dict(project.metadata)
            metadata.update(
                {
                    "estimated_duration": estimate_project_duration(tasks),
                    "risk_factors": identify_risk_factors(project, tasks, requirements),
                    "decomposed_at": now_iso(),
                }
            )
            tx.update_project(
                project_id,
                {
                    "task_ids": [t.id for t in tasks],
                    "requirements": requirements,
                    "milestones": derive_milestones(tasks),
                    "metadata": metadata,
                    "status": ProjectStatus.ACTIVE,
                },
            )

        logger.info("Project %s decomposed into %d task(s)", project_id, len(tasks))
        for task in tasks:
            self._emit_task(EventType.TASK_CREATED, task)
        self._emit_project(EventType.PROJECT_DECOMPOSED, project, task_count=len(tasks))
        return tasks

    def refine_decomposition(self, project_id: str, refinement: Refinement) -> dict[str, Any]:
        """Merge a diff of tasks and dependency edges into a decomposed project.

        Template dependencies are resolved by title against the project's
        tasks, including templates added earlier in the same refinement;
        unresolved titles are dropped.  Requirements, milestones and the
        schedule metadata are recomputed afterwards.
        """
        added: list[Task] = []
        removed: list[str] = []
        deps_added = 0
        deps_removed = 0

        with self.store.transaction() as tx:
            project = tx.get_project(project_id)
            if project is None:
                raise ProjectNotFound(project_id)
            project_tasks = [t for t in (tx.get(tid) for tid in project.task_ids) if t is not None]
            drop = set(refinement.tasks_to_remove)
            for task in project_tasks:
                if task.id in drop:
                    _ensure_removable(task)

            for template in refinement.tasks_to_add:
                by_title = {t.title: t.id for t in project_tasks}
                task = Task(
                    project_id=project_id,
                    title=template.title,
                    description=template.description or template.title,
                    task_type=template.task_type,
                    priority=template.priority,
                    dependencies=[by_title[d] for d in template.dependencies if d in by_title],
                    metadata={"estimated_hours": template.estimated_hours, "required_skills": list(template.skills)},
                )
                tx.add(task)
                tx.enqueue(task.id)
                project_tasks.append(task)
                added.append(task)

            for task in list(project_tasks):
                if task.id in drop:
                    tx.remove(task.id)
                    project_tasks.remove(task)
                    removed.append(task.id)
            if drop:
                for task in project_tasks:
                    if any(d in drop for d in task.dependencies):
                        tx.update(task.id, {"dependencies": [d for d in task.dependencies if d not in drop]})

            owned = {t.id for t in project_tasks}
            for edge in refinement.dependencies_to_add:
                task = tx.get(edge.to)
                if task is None or edge.to not in owned:
                    logger.warning("Skipping dependency %s -> %s: unknown task", edge.from_id, edge.to)
                    continue
                if edge.from_id in task.dependencies:
                    continue
                if self.store.detect_cycles and self.store.would_create_cycle(task.id, edge.from_id):
                    logger.warning("Skipping dependency %s -> %s: would create a cycle", edge.from_id, edge.to)
                    continue
                tx.update(task.id, {"dependencies": task.dependencies + [edge.from_id]})
                deps_added += 1
            for edge in refinement.dependencies_to_remove:
                task = tx.get(edge.to)
                if task is None or edge.to not in owned or edge.from_id not in task.dependencies:
                    continue
                tx.update(task.id, {"dependencies": [d for d in task.dependencies if d != edge.from_id]})
                deps_removed += 1

            requirements = derive_requirements(project_tasks)
            duration = estimate_project_duration(project_tasks)
            metadata = dict(project.metadata)
            metadata.update(
                {
                    "estimated_duration": duration,
                    "risk_factors": identify_risk_factors(project, project_tasks, requirements),
                    "last_refined_at": now_iso(),
                }
            )
            tx.update_project(
                project_id,
                {
                    "task_ids": [t.id for t in project_tasks],
                    "requirements": requirements,
                    "milestones": derive_milestones(project_tasks),
                    "metadata": metadata,
                },
            )

        summary = {
            "project_id": project_id,
            "tasks_added": len(added),
            "tasks_removed": len(removed),
            "dependencies_added": deps_added,
            "dependencies_removed": deps_removed,
            "task_count": len(project_tasks),
            "estimated_duration": duration,
        }
        logger.info("Refined project %s: %s", project_id, summary)
        for task in added:
            self._emit_task(EventType.TASK_CREATED, task)
        self._emit_project(EventType.PROJECT_REFINED, project, summary=summary)
        return summary
