"""In-memory task/project store with lock-guarded, atomic operations.

The store is the single owner of task, project and queue state.  Every read
and write goes through the re-entrant lock, and status changes made by the
dispatch pipeline use :meth:`TaskStore.try_transition`, a compare-and-set on
the task status, so two callers can never both claim the same pending task.

Records returned by lookups are the live objects; mutate them only through
the store's update operations.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from ..errors import TaskNotFound, ValidationFailure
from .model import Project, Task, TaskPriority, TaskStatus, TaskType, coerce_enum, unique_dependencies

logger = logging.getLogger(__name__)

_UPDATABLE_TASK_FIELDS = {
    "title",
    "description",
    "task_type",
    "priority",
    "status",
    "dependencies",
    "assigned_agent",
    "started_at",
    "completed_at",
    "output",
    "error",
    "actual_duration",
    "metadata",
}

_UPDATABLE_PROJECT_FIELDS = {
    "name",
    "description",
    "prd",
    "task_ids",
    "milestones",
    "requirements",
    "status",
    "metadata",
}


def _has_cycle(adj: dict[str, list[str]], from_id: str, to_id: str) -> bool:
    """Return True if adding an edge from_id→to_id would create a cycle.

    Checks whether to_id can already reach from_id via existing edges.
    """
    visited: set[str] = set()
    stack = [to_id]
    while stack:
        node = stack.pop()
        if node == from_id:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(adj.get(node, []))
    return False


class TaskStore:
    """Thread-safe, in-memory store for :class:`Task` and :class:`Project` objects.

    Parameters
    ----------
    detect_cycles:
        Reject dependency edges that would close a cycle.  Off by default,
        in which case a cycle just leaves the involved tasks unschedulable.
    """

    def __init__(self, *, detect_cycles: bool = False) -> None:
        self.detect_cycles = detect_cycles
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._projects: dict[str, Project] = {}
        self._queue: list[str] = []

    @contextmanager
    def transaction(self) -> Iterator[_StoreTx]:
        """Hold the store lock for a multi-step operation.

        Usage::

            with store.transaction() as tx:
                project = tx.get_project(project_id)
                for task in drafts:
                    tx.add(task)
                    tx.enqueue(task.id)
        """
        with self._lock:
            yield _StoreTx(self)

    # -- tasks ----------------------------------------------------------------

    def add_task(self, task: Task, *, enqueue: bool = True) -> Task:
        with self.transaction() as tx:
            tx.add(task)
            if enqueue:
                tx.enqueue(task.id)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def list_tasks(
        self,
        *,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        priority: Optional[str] = None,
        project_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        with self.transaction() as tx:
            return tx.find(
                status=status,
                task_type=task_type,
                priority=priority,
                project_id=project_id,
                search=search,
            )

    def tasks_by_project(self, project_id: str) -> list[Task]:
        with self._lock:
            return [t for t in self._tasks.values() if t.project_id == project_id]

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        """Apply partial updates to a task.  Returns the updated task or None."""
        with self.transaction() as tx:
            return tx.update(task_id, changes)

    def delete_task(self, task_id: str) -> bool:
        with self.transaction() as tx:
            return tx.remove(task_id)

    # -- queue ----------------------------------------------------------------

    def enqueue(self, task: Task) -> None:
        """Insert *task* into the pending queue and re-sort by priority rank."""
        with self.transaction() as tx:
            tx.enqueue(task.id)

    def queue_snapshot(self) -> list[Task]:
        with self._lock:
            return [self._tasks[tid] for tid in self._queue if tid in self._tasks]

    def eligible_tasks(self) -> list[Task]:
        """Queued ``pending`` tasks whose every dependency is ``completed``, in queue order."""
        with self._lock:
            out: list[Task] = []
            for tid in self._queue:
                task = self._tasks.get(tid)
                if task is None or task.status != TaskStatus.PENDING:
                    continue
                ready = True
                for dep_id in task.dependencies:
                    dep = self._tasks.get(dep_id)
                    if dep is None or dep.status != TaskStatus.COMPLETED:
                        ready = False
                        break
                if ready:
                    out.append(task)
            return out

    def try_transition(
        self,
        task_id: str,
        expected: Iterable[TaskStatus],
        new_status: TaskStatus,
        **changes: Any,
    ) -> Optional[Task]:
        """Compare-and-set on task status.

        Moves the task to *new_status* (applying *changes* first) only when its
        current status is one of *expected*.  Returns the task on success or
        ``None`` when the status did not match.  A claimed task
        (``assigned``) leaves the pending queue.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            if task.status not in set(expected):
                return None
            for key, value in changes.items():
                if key not in _UPDATABLE_TASK_FIELDS or key == "status":
                    raise ValueError(f"Field {key!r} cannot be set during a transition")
                setattr(task, key, value)
            task.transition(new_status)
            if new_status == TaskStatus.ASSIGNED and task_id in self._queue:
                self._queue.remove(task_id)
            return task

    # -- projects ---------------------------------------------------------------

    def add_project(self, project: Project) -> Project:
        with self.transaction() as tx:
            tx.add_project(project)
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._projects.get(project_id)

    def list_projects(self) -> list[Project]:
        with self._lock:
            return list(self._projects.values())

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        with self.transaction() as tx:
            return tx.update_project(project_id, changes)

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            return self._projects.pop(project_id, None) is not None

    # -- dependency graph -------------------------------------------------------

    def would_create_cycle(self, task_id: str, depends_on: str) -> bool:
        """True if making *task_id* depend on *depends_on* closes a cycle."""
        with self._lock:
            adj = {t.id: list(t.dependencies) for t in self._tasks.values()}
            return _has_cycle(adj, task_id, depends_on)


class _StoreTx:
    """Operations over the store's state while its lock is held."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._tasks = store._tasks
        self._projects = store._projects

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    def find(
        self,
        *,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        priority: Optional[str] = None,
        project_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        out: list[Task] = []
        for t in self._tasks.values():
            if status and t.status.value != status:
                continue
            if task_type and t.task_type.value != task_type:
                continue
            if priority and t.priority.value != priority:
                continue
            if project_id is not None and t.project_id != project_id:
                continue
            if search:
                q = search.lower()
                if q not in t.title.lower() and q not in t.description.lower() and q not in t.id.lower():
                    continue
            out.append(t)
        return out

    # -- task mutations -------------------------------------------------------

    def add(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} already exists")
        self._check_dependencies(task.id, task.dependencies)
        self._tasks[task.id] = task
        return task

    def update(self, task_id: str, changes: dict[str, Any]) -> Optional[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        changes = dict(changes)
        if "status" in changes:
            requested = coerce_enum(TaskStatus, changes.pop("status"), None)
            if requested is None:
                raise ValidationFailure(f"Unknown task status for {task_id}")
            if requested != task.status:
                raise ValidationFailure(
                    f"Status of task {task_id} changes only through dispatch "
                    f"(requested {task.status.value} -> {requested.value})",
                    details={"task_id": task_id, "status": task.status.value},
                )
        if "task_type" in changes:
            changes["task_type"] = coerce_enum(TaskType, changes["task_type"], task.task_type)
        if "priority" in changes:
            changes["priority"] = coerce_enum(TaskPriority, changes["priority"], task.priority)
        if "dependencies" in changes:
            deps = unique_dependencies(task_id, list(changes["dependencies"] or []))
            self._check_dependencies(task_id, [d for d in deps if d not in task.dependencies])
            changes["dependencies"] = deps
        for key, value in changes.items():
            if key in _UPDATABLE_TASK_FIELDS:
                setattr(task, key, value)
        task.touch()
        if "priority" in changes and task_id in self._store._queue:
            self._sort_queue()
        return task

    def remove(self, task_id: str) -> bool:
        """Physically remove a task from the store, the queue and its project."""
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        if task_id in self._store._queue:
            self._store._queue.remove(task_id)
        if task.project_id:
            project = self._projects.get(task.project_id)
            if project and task_id in project.task_ids:
                project.task_ids = [tid for tid in project.task_ids if tid != task_id]
                project.touch()
        return True

    def enqueue(self, task_id: str) -> None:
        if task_id not in self._tasks:
            raise TaskNotFound(task_id)
        if task_id not in self._store._queue:
            self._store._queue.append(task_id)
        self._sort_queue()

    def _sort_queue(self) -> None:
        # list.sort is stable, so equal priorities keep insertion order
        self._store._queue.sort(key=lambda tid: self._tasks[tid].priority.sort_key)

    def _check_dependencies(self, task_id: str, dependencies: list[str]) -> None:
        for dep_id in dependencies:
            if dep_id not in self._tasks:
                logger.warning("Task %s depends on unknown task %s", task_id, dep_id)
        if not self._store.detect_cycles:
            return
        adj = {t.id: list(t.dependencies) for t in self._tasks.values()}
        for dep_id in dependencies:
            if _has_cycle(adj, task_id, dep_id):
                raise ValidationFailure(
                    f"Dependency {task_id} -> {dep_id} would create a cycle",
                    details={"task_id": task_id, "depends_on": dep_id},
                )
            adj.setdefault(task_id, []).append(dep_id)

    # -- project mutations ------------------------------------------------------

    def add_project(self, project: Project) -> Project:
        if project.id in self._projects:
            raise ValueError(f"Project {project.id} already exists")
        self._projects[project.id] = project
        return project

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Optional[Project]:
        project = self._projects.get(project_id)
        if project is None:
            return None
        for key, value in changes.items():
            if key in _UPDATABLE_PROJECT_FIELDS:
                setattr(project, key, value)
        project.touch()
        return project
