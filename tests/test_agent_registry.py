"""Tests for agent profiles, availability and scoring."""

from __future__ import annotations

import pytest

from fakes import FakeAgent
from task_orchestrator.agents.registry import (
    AgentCapability,
    AgentProfile,
    AgentRegistry,
    CapabilityCategory,
    Complexity,
)
from task_orchestrator.events.bus import EventBus, EventType
from task_orchestrator.task_engine.model import Task, TaskPriority, TaskType


def _dev_profile(**kw) -> AgentProfile:
    return AgentProfile(
        name="dev",
        capabilities=[
            AgentCapability(
                name="backend",
                category=CapabilityCategory.DEVELOPMENT,
                complexity=Complexity.COMPLEX,
                languages=("python", "go"),
                frameworks=("fastapi",),
            )
        ],
        **kw,
    )


class TestProfiles:
    def test_capability_from_dict(self) -> None:
        cap = AgentCapability.from_dict(
            {"category": "Testing", "complexity": "simple", "languages": ["python"], "name": "qa"}
        )
        assert cap.category == CapabilityCategory.TESTING
        assert cap.complexity == Complexity.SIMPLE
        assert cap.languages == ("python",)

    def test_capability_unknown_category(self) -> None:
        cap = AgentCapability.from_dict({"category": "astrology", "complexity": "extreme"})
        assert cap.category == CapabilityCategory.GENERAL
        assert cap.complexity == Complexity.MODERATE

    def test_development_covers_implementation(self) -> None:
        cap = AgentCapability(name="x", category=CapabilityCategory.DEVELOPMENT)
        assert cap.matches_task_type("implementation")
        assert cap.matches_task_type("development")
        assert not cap.matches_task_type("test")

    def test_profile_from_dict(self) -> None:
        profile = AgentProfile.from_dict({"id": "a1", "cost_per_request": "0.5", "max_concurrent_tasks": 0})
        assert profile.name == "a1"
        assert profile.cost_per_request == 0.5
        assert profile.max_concurrent_tasks == 1
        assert profile.enabled


class TestRegistration:
    def test_register_and_lookup(self) -> None:
        registry = AgentRegistry()
        agent = FakeAgent("a1")
        registry.register(agent)
        assert registry.get_agent("a1") is agent
        assert registry.agent_ids() == ["a1"]
        with pytest.raises(ValueError):
            registry.register(FakeAgent("a1"))
        assert registry.unregister("a1")
        assert not registry.unregister("a1")
        assert registry.get_agent("a1") is None

    @pytest.mark.anyio
    async def test_disabled_agent_unavailable(self) -> None:
        registry = AgentRegistry()
        registry.register(FakeAgent("off"), AgentProfile(enabled=False))
        registry.register(FakeAgent("on"))
        assert await registry.available_agents() == ["on"]
        ranking = await registry.ranked_agents_for(Task(title="t"))
        assert [s.agent_id for s in ranking] == ["on"]


class TestScoring:
    @pytest.mark.anyio
    async def test_new_agent_gets_speed_bonus_only(self) -> None:
        registry = AgentRegistry()
        registry.register(FakeAgent("plain"))
        [score] = await registry.ranked_agents_for(Task(title="t"))
        assert score.score == 5
        assert score.reasons == ["Fast response time"]

    @pytest.mark.anyio
    async def test_capability_bonuses(self) -> None:
        registry = AgentRegistry()
        registry.register(FakeAgent("dev"), _dev_profile())
        task = Task(
            title="t",
            task_type=TaskType.IMPLEMENTATION,
            priority=TaskPriority.CRITICAL,
            metadata={"languages": ["python"], "frameworks": ["fastapi", "django"]},
        )
        [score] = await registry.ranked_agents_for(task)
        # type 20 + language 10 + framework 10 + complex critical 15 + speed 5
        assert score.score == 60

    @pytest.mark.anyio
    async def test_cost_penalty_for_low_priority(self) -> None:
        registry = AgentRegistry()
        registry.register(FakeAgent("cheap"), AgentProfile(cost_per_request=0.01))
        registry.register(FakeAgent("pricey"), AgentProfile(cost_per_request=0.5))
        ranking = await registry.ranked_agents_for(Task(title="t", priority=TaskPriority.LOW))
        assert [(s.agent_id, s.score) for s in ranking] == [("cheap", 5), ("pricey", -5)]

    @pytest.mark.anyio
    async def test_ranking_sorted_best_first(self) -> None:
        registry = AgentRegistry()
        registry.register(FakeAgent("generic"))
        registry.register(FakeAgent("dev"), _dev_profile())
        ranking = await registry.ranked_agents_for(Task(title="t"))
        assert [s.agent_id for s in ranking] == ["dev", "generic"]


class TestBusTracking:
    @pytest.mark.anyio
    async def test_assignment_marks_agent_busy(self) -> None:
        bus = EventBus()
        registry = AgentRegistry(bus)
        registry.register(FakeAgent("a1"))
        bus.emit(EventType.TASK_ASSIGNED, "task-1", {"task": {}, "agent_id": "a1"})
        assert await registry.available_agents() == []

        bus.emit(EventType.TASK_COMPLETED, "task-1", {"task": {"actual_duration": 1200.0}, "agent_id": "a1"})
        assert await registry.available_agents() == ["a1"]
        [entry] = registry.describe()
        assert entry["stats"]["completed"] == 1
        assert entry["stats"]["success_rate"] == 100.0
        assert entry["stats"]["average_response_ms"] == 1200.0

    @pytest.mark.anyio
    async def test_success_rate_bonus_and_failures(self) -> None:
        bus = EventBus()
        registry = AgentRegistry(bus)
        registry.register(FakeAgent("a1"))
        bus.emit(EventType.TASK_COMPLETED, "task-1", {"task": {"actual_duration": 100}, "agent_id": "a1"})
        [score] = await registry.ranked_agents_for(Task(title="t"))
        assert score.score == 15

        bus.emit(EventType.TASK_ERROR, "task-2", {"task": {"assigned_agent": "a1"}, "error": "x"})
        [entry] = registry.describe()
        assert entry["stats"]["failed"] == 1
        assert entry["stats"]["success_rate"] == 50.0

    def test_close_stops_tracking(self) -> None:
        bus = EventBus()
        registry = AgentRegistry(bus)
        registry.register(FakeAgent("a1"))
        registry.close()
        bus.emit(EventType.TASK_ASSIGNED, "task-1", {"agent_id": "a1"})
        assert registry.describe()[0]["stats"]["active_tasks"] == []
