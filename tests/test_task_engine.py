"""Tests for the task engine: CRUD, events, decomposition bookkeeping and refinement."""

from __future__ import annotations

import pytest

from task_orchestrator.errors import ProjectNotFound, TaskConflict, TaskNotFound, ValidationFailure
from task_orchestrator.events.bus import Event, EventBus, EventType
from task_orchestrator.task_engine.engine import (
    DependencyEdge,
    Refinement,
    TaskEngine,
    TaskTemplate,
    generate_title,
)
from task_orchestrator.task_engine.model import ProjectStatus, Task, TaskPriority, TaskStatus, TaskType
from task_orchestrator.task_engine.store import TaskStore


@pytest.fixture
def events(bus: EventBus) -> list[Event]:
    seen: list[Event] = []
    bus.subscribe(seen.append)
    return seen


@pytest.fixture
def engine(store: TaskStore, bus: EventBus) -> TaskEngine:
    return TaskEngine(store, bus)


def _types(events: list[Event]) -> list[str]:
    return [e.event_type.value for e in events]


class TestTitles:
    def test_first_line(self) -> None:
        assert generate_title("  Fix login\nmore detail") == "Fix login"

    def test_truncation(self) -> None:
        title = generate_title("x" * 150)
        assert title == "x" * 100 + "..."


class TestTaskCrud:
    def test_create_task_queues_and_announces(self, engine: TaskEngine, store: TaskStore, events: list[Event]) -> None:
        task = engine.create_task("Build the thing", priority="high", task_type="design")
        assert task.title == "Build the thing"
        assert task.priority == TaskPriority.HIGH
        assert task.task_type == TaskType.DESIGN
        assert store.queue_snapshot() == [task]
        assert _types(events) == ["task:created"]
        assert events[0].payload["task"]["id"] == task.id

    def test_create_task_without_enqueue(self, engine: TaskEngine, store: TaskStore) -> None:
        task = engine.create_task("meta", enqueue=False)
        assert store.get_task(task.id) is task
        assert store.queue_snapshot() == []

    def test_create_task_attaches_to_project(self, engine: TaskEngine) -> None:
        project = engine.create_project("Shop")
        task = engine.create_task("Checkout", project_id=project.id)
        assert project.task_ids == [task.id]
        assert engine.project_tasks(project.id) == [task]

    def test_create_task_unknown_project(self, engine: TaskEngine, store: TaskStore) -> None:
        with pytest.raises(ProjectNotFound):
            engine.create_task("x", project_id="proj-missing")
        assert store.list_tasks() == []

    def test_get_unknown_task(self, engine: TaskEngine) -> None:
        with pytest.raises(TaskNotFound) as exc:
            engine.get_task("task-nope")
        assert exc.value.http_status == 404

    def test_update_task_announces_fields(self, engine: TaskEngine, events: list[Event]) -> None:
        task = engine.create_task("x")
        engine.update_task(task.id, {"title": "y", "priority": "low"})
        assert task.title == "y"
        assert events[-1].event_type == EventType.TASK_UPDATED
        assert events[-1].payload["fields"] == ["priority", "title"]

    def test_update_unknown_task(self, engine: TaskEngine) -> None:
        with pytest.raises(TaskNotFound):
            engine.update_task("task-nope", {"title": "y"})

    def test_delete_task(self, engine: TaskEngine, store: TaskStore, events: list[Event]) -> None:
        project = engine.create_project("p")
        task = engine.create_task("x", project_id=project.id)
        engine.delete_task(task.id)
        assert store.get_task(task.id) is None
        assert project.task_ids == []
        assert events[-1].event_type == EventType.TASK_DELETED
        with pytest.raises(TaskNotFound):
            engine.delete_task(task.id)

    def test_delete_leaves_dependents_blocked(self, engine: TaskEngine, store: TaskStore) -> None:
        dep = engine.create_task("dep")
        child = engine.create_task("child", dependencies=[dep.id])
        engine.delete_task(dep.id)
        assert child.dependencies == [dep.id]
        assert store.eligible_tasks() == []

    def test_delete_in_flight_task_conflicts(self, engine: TaskEngine, store: TaskStore, events: list[Event]) -> None:
        task = engine.create_task("x")
        store.try_transition(task.id, [TaskStatus.PENDING], TaskStatus.ASSIGNED, assigned_agent="agent-1")
        with pytest.raises(TaskConflict) as exc:
            engine.delete_task(task.id)
        assert exc.value.http_status == 409
        assert "deleted" in str(exc.value)
        store.try_transition(task.id, [TaskStatus.ASSIGNED], TaskStatus.IN_PROGRESS)
        with pytest.raises(TaskConflict):
            engine.delete_task(task.id)
        assert store.get_task(task.id) is task
        assert events[-1].event_type == EventType.TASK_CREATED

    def test_delete_finished_task(self, engine: TaskEngine, store: TaskStore) -> None:
        task = engine.create_task("x")
        for expected, status in (
            (TaskStatus.PENDING, TaskStatus.ASSIGNED),
            (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS),
            (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
        ):
            store.try_transition(task.id, [expected], status)
        engine.delete_task(task.id)
        assert store.get_task(task.id) is None


class TestProjectCrud:
    def test_create_project_announces(self, engine: TaskEngine, events: list[Event]) -> None:
        project = engine.create_project("Shop", "desc", prd="")
        assert project.prd is None
        assert project.status == ProjectStatus.PLANNING
        assert _types(events) == ["project:created"]

    def test_update_project_status(self, engine: TaskEngine) -> None:
        project = engine.create_project("Shop")
        engine.update_project(project.id, {"status": "completed"})
        assert project.status == ProjectStatus.COMPLETED
        with pytest.raises(ValidationFailure):
            engine.update_project(project.id, {"status": "archived"})
        with pytest.raises(ProjectNotFound):
            engine.update_project("proj-missing", {"name": "x"})

    def test_delete_project_removes_owned_tasks(self, engine: TaskEngine, store: TaskStore, events: list[Event]) -> None:
        project = engine.create_project("Shop")
        a = engine.create_task("a", project_id=project.id)
        b = engine.create_task("b", project_id=project.id)
        loose = engine.create_task("loose")
        engine.delete_project(project.id)
        assert store.get_project(project.id) is None
        assert store.list_tasks() == [loose]
        assert events[-1].event_type == EventType.PROJECT_DELETED
        assert events[-1].payload["deleted_task_ids"] == [a.id, b.id]
        with pytest.raises(ProjectNotFound):
            engine.get_project(project.id)

    def test_delete_project_with_in_flight_task(self, engine: TaskEngine, store: TaskStore) -> None:
        project = engine.create_project("Shop")
        a = engine.create_task("a", project_id=project.id)
        b = engine.create_task("b", project_id=project.id)
        store.try_transition(b.id, [TaskStatus.PENDING], TaskStatus.ASSIGNED)
        with pytest.raises(TaskConflict):
            engine.delete_project(project.id)
        assert store.get_project(project.id) is project
        assert {t.id for t in store.list_tasks()} == {a.id, b.id}
        assert project.task_ids == [a.id, b.id]


class TestApplyDecomposition:
    def test_replaces_project_plan(self, engine: TaskEngine, store: TaskStore, events: list[Event]) -> None:
        project = engine.create_project("Shop", prd="real-time payments")
        old = engine.create_task("old", project_id=project.id)
        drafts = [
            Task(title="Gather", task_type=TaskType.REQUIREMENT, priority=TaskPriority.HIGH),
            Task(title="Build"),
        ]
        engine.apply_decomposition(project.id, drafts)

        assert project.task_ids == [t.id for t in drafts]
        assert project.status == ProjectStatus.ACTIVE
        assert all(t.project_id == project.id for t in drafts)
        assert [r.description for r in project.requirements] == ["Gather"]
        assert [m.name for m in project.milestones][-1] == "Project Complete"
        assert project.metadata["estimated_duration"] == 3
        assert project.metadata["risk_factors"]
        assert "decomposed_at" in project.metadata
        # earlier tasks are detached, not deleted
        assert store.get_task(old.id) is old
        assert {t.id for t in store.queue_snapshot()} >= {t.id for t in drafts}
        assert _types(events)[-3:] == ["task:created", "task:created", "project:decomposed"]
        assert events[-1].payload["task_count"] == 2

    def test_unknown_project(self, engine: TaskEngine) -> None:
        with pytest.raises(ProjectNotFound):
            engine.apply_decomposition("proj-missing", [Task(title="x")])


class TestRefinement:
    @pytest.fixture
    def planned(self, engine: TaskEngine):
        project = engine.create_project("Shop")
        design = Task(title="Design", task_type=TaskType.DESIGN)
        build = Task(title="Build", dependencies=[design.id])
        docs = Task(title="Docs")
        engine.apply_decomposition(project.id, [design, build, docs])
        return project, design, build, docs

    def test_add_templates_resolving_titles(self, engine: TaskEngine, planned) -> None:
        project, design, build, _ = planned
        refinement = Refinement(
            tasks_to_add=[
                TaskTemplate(title="Test", task_type=TaskType.TEST, estimated_hours=8, skills=["pytest"], dependencies=["Build", "Nope"]),
                TaskTemplate(title="Deploy", task_type=TaskType.DEPLOYMENT, dependencies=["Test"]),
            ]
        )
        summary = engine.refine_decomposition(project.id, refinement)
        tasks = {t.title: t for t in engine.project_tasks(project.id)}
        assert tasks["Test"].dependencies == [build.id]
        assert tasks["Deploy"].dependencies == [tasks["Test"].id]
        assert tasks["Test"].metadata == {"estimated_hours": 8, "required_skills": ["pytest"]}
        assert summary["tasks_added"] == 2
        assert summary["task_count"] == 5
        assert "Testing Complete" in [m.name for m in project.milestones]
        assert "last_refined_at" in project.metadata

    def test_remove_task_strips_dependents(self, engine: TaskEngine, store: TaskStore, planned) -> None:
        project, design, build, _ = planned
        summary = engine.refine_decomposition(project.id, Refinement(tasks_to_remove=[design.id, "task-foreign"]))
        assert summary["tasks_removed"] == 1
        assert store.get_task(design.id) is None
        assert build.dependencies == []
        assert design.id not in project.task_ids

    def test_dependency_edges(self, engine: TaskEngine, planned, events: list[Event]) -> None:
        project, design, build, docs = planned
        outsider = engine.create_task("outside")
        summary = engine.refine_decomposition(
            project.id,
            Refinement(
                dependencies_to_add=[
                    DependencyEdge(from_id=build.id, to=docs.id),
                    DependencyEdge(from_id=build.id, to=docs.id),
                    DependencyEdge(from_id=docs.id, to=outsider.id),
                ],
                dependencies_to_remove=[DependencyEdge(from_id=design.id, to=build.id)],
            ),
        )
        assert docs.dependencies == [build.id]
        assert outsider.dependencies == []
        assert build.dependencies == []
        assert summary["dependencies_added"] == 1
        assert summary["dependencies_removed"] == 1
        assert events[-1].event_type == EventType.PROJECT_REFINED
        assert events[-1].payload["summary"] == summary

    def test_remove_in_flight_task_conflicts(self, engine: TaskEngine, store: TaskStore, planned) -> None:
        project, design, build, docs = planned
        store.try_transition(design.id, [TaskStatus.PENDING], TaskStatus.ASSIGNED)
        with pytest.raises(TaskConflict):
            engine.refine_decomposition(
                project.id,
                Refinement(tasks_to_add=[TaskTemplate(title="Extra")], tasks_to_remove=[docs.id, design.id]),
            )
        assert [t.title for t in engine.project_tasks(project.id)] == ["Design", "Build", "Docs"]
        assert build.dependencies == [design.id]

    def test_cyclic_edge_skipped_when_detection_enabled(self, bus: EventBus) -> None:
        engine = TaskEngine(TaskStore(detect_cycles=True), bus)
        project = engine.create_project("Shop")
        design = Task(title="Design")
        build = Task(title="Build", dependencies=[design.id])
        engine.apply_decomposition(project.id, [design, build])
        summary = engine.refine_decomposition(
            project.id, Refinement(dependencies_to_add=[DependencyEdge(from_id=build.id, to=design.id)])
        )
        assert summary["dependencies_added"] == 0
        assert design.dependencies == []

    def test_unknown_project(self, engine: TaskEngine) -> None:
        with pytest.raises(ProjectNotFound):
            engine.refine_decomposition("proj-missing", Refinement())


class TestRefinementParsing:
    def test_from_dict(self) -> None:
        refinement = Refinement.from_dict(
            {
                "tasks_to_add": [{"title": "QA", "type": "test", "priority": "HIGH"}],
                "tasks_to_remove": ["task-1"],
                "dependencies_to_add": [{"from": "task-a", "to": "task-b"}],
            }
        )
        assert refinement.tasks_to_add[0].task_type == TaskType.TEST
        assert refinement.tasks_to_add[0].priority == TaskPriority.HIGH
        assert refinement.dependencies_to_add == [DependencyEdge(from_id="task-a", to="task-b")]

    def test_template_requires_title(self) -> None:
        with pytest.raises(ValidationFailure):
            TaskTemplate.from_dict({"title": "  "})

    def test_edge_requires_both_ends(self) -> None:
        with pytest.raises(ValidationFailure):
            DependencyEdge.from_dict({"from": "task-a"})
