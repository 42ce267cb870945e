"""Agent registry: profiles, availability tracking and capability scoring.

Each registered agent carries an :class:`AgentProfile` describing what it can
do (capabilities, cost, concurrency limit).  The registry implements the
agent directory the orchestrator consults: it ranks available agents for a
task and follows ``task:*`` events on the bus to know which agents are busy
and how well they have performed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..constants import DEFAULT_AGENT_MAX_CONCURRENT_TASKS
from ..events.bus import Event, EventBus, EventType
from ..task_engine.model import Task, TaskPriority
from .interfaces import Agent, AgentScore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CapabilityCategory(str, Enum):
    PLANNING = "planning"
    DESIGN = "design"
    DEVELOPMENT = "development"
    TESTING = "testing"
    DEPLOYMENT = "deployment"
    SECURITY = "security"
    GENERAL = "general"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


# Task types that a capability category also covers besides its own name.
_CATEGORY_ALIASES: dict[str, set[str]] = {
    CapabilityCategory.DEVELOPMENT.value: {"implementation"},
}

_EXPENSIVE_PER_REQUEST = 0.1
_HIGH_SUCCESS_RATE = 90.0
_FAST_RESPONSE_MS = 5000.0


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentCapability:
    name: str
    category: CapabilityCategory = CapabilityCategory.GENERAL
    complexity: Complexity = Complexity.MODERATE
    languages: tuple[str, ...] = ()
    frameworks: tuple[str, ...] = ()
    description: str = ""

    def matches_task_type(self, task_type: str) -> bool:
        return self.category.value == task_type or task_type in _CATEGORY_ALIASES.get(self.category.value, set())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentCapability":
        try:
            category = CapabilityCategory(str(data.get("category") or "general").lower())
        except ValueError:
            logger.warning("Unknown capability category %r; using general", data.get("category"))
            category = CapabilityCategory.GENERAL
        try:
            complexity = Complexity(str(data.get("complexity") or "moderate").lower())
        except ValueError:
            complexity = Complexity.MODERATE
        return cls(
            name=str(data.get("name") or category.value),
            category=category,
            complexity=complexity,
            languages=tuple(str(x) for x in data.get("languages") or ()),
            frameworks=tuple(str(x) for x in data.get("frameworks") or ()),
            description=str(data.get("description") or ""),
        )


@dataclass
class AgentProfile:
    """What an agent can do and how much work it takes at once."""

    name: str = ""
    capabilities: list[AgentCapability] = field(default_factory=list)
    cost_per_request: Optional[float] = None
    max_concurrent_tasks: int = DEFAULT_AGENT_MAX_CONCURRENT_TASKS
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentProfile":
        caps = [AgentCapability.from_dict(c) for c in data.get("capabilities") or [] if isinstance(c, dict)]
        cost = data.get("cost_per_request")
        return cls(
            name=str(data.get("name") or data.get("id") or ""),
            capabilities=caps,
            cost_per_request=float(cost) if cost is not None else None,
            max_concurrent_tasks=max(1, int(data.get("max_concurrent_tasks") or DEFAULT_AGENT_MAX_CONCURRENT_TASKS)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class AgentStats:
    completed: int = 0
    failed: int = 0
    total_duration_ms: float = 0.0
    active_tasks: set[str] = field(default_factory=set)

    @property
    def success_rate(self) -> float:
        finished = self.completed + self.failed
        return (self.completed / finished) * 100.0 if finished else 0.0

    @property
    def average_response_ms(self) -> float:
        return self.total_duration_ms / self.completed if self.completed else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 2),
            "average_response_ms": round(self.average_response_ms, 2),
            "active_tasks": sorted(self.active_tasks),
        }


@dataclass
class _Entry:
    agent: Agent
    profile: AgentProfile
    stats: AgentStats = field(default_factory=AgentStats)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class AgentRegistry:
    """In-memory agent directory.

    Pass a bus to have the registry track assignments and outcomes from
    ``task:assigned`` / ``task:completed`` / ``task:failed`` / ``task:error``.
    """

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._bus = bus
        if bus is not None:
            bus.subscribe(self._on_assigned, EventType.TASK_ASSIGNED)
            bus.subscribe(self._on_completed, EventType.TASK_COMPLETED)
            bus.subscribe(self._on_failed, EventType.TASK_FAILED)
            bus.subscribe(self._on_failed, EventType.TASK_ERROR)

    # -- registration ---------------------------------------------------------

    def register(self, agent: Agent, profile: Optional[AgentProfile] = None) -> None:
        profile = profile or AgentProfile(name=agent.agent_id)
        with self._lock:
            if agent.agent_id in self._entries:
                raise ValueError(f"Agent {agent.agent_id} is already registered")
            self._entries[agent.agent_id] = _Entry(agent=agent, profile=profile)
        logger.info("Registered agent %s (%d capabilities)", agent.agent_id, len(profile.capabilities))

    def unregister(self, agent_id: str) -> bool:
        with self._lock:
            return self._entries.pop(agent_id, None) is not None

    def close(self) -> None:
        """Stop following bus events."""
        if self._bus is None:
            return
        self._bus.unsubscribe(self._on_assigned, EventType.TASK_ASSIGNED)
        self._bus.unsubscribe(self._on_completed, EventType.TASK_COMPLETED)
        self._bus.unsubscribe(self._on_failed, EventType.TASK_FAILED)
        self._bus.unsubscribe(self._on_failed, EventType.TASK_ERROR)
        self._bus = None

    # -- directory --------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            entry = self._entries.get(agent_id)
            return entry.agent if entry else None

    def agent_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    async def available_agents(self) -> list[str]:
        with self._lock:
            return [aid for aid, entry in self._entries.items() if self._is_available(entry)]

    async def ranked_agents_for(self, task: Task) -> list[AgentScore]:
        with self._lock:
            scores = [
                self._score(aid, entry, task) for aid, entry in self._entries.items() if self._is_available(entry)
            ]
        scores.sort(key=lambda s: s.score, reverse=True)
        return scores

    def describe(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "agent_id": aid,
                    "name": entry.profile.name,
                    "available": self._is_available(entry),
                    "max_concurrent_tasks": entry.profile.max_concurrent_tasks,
                    "stats": entry.stats.to_dict(),
                }
                for aid, entry in self._entries.items()
            ]

    # -- scoring ----------------------------------------------------------------

    @staticmethod
    def _is_available(entry: _Entry) -> bool:
        return entry.profile.enabled and len(entry.stats.active_tasks) < entry.profile.max_concurrent_tasks

    @staticmethod
    def _score(agent_id: str, entry: _Entry, task: Task) -> AgentScore:
        score = AgentScore(agent_id=agent_id, score=0)
        wanted_languages = set(task.metadata.get("languages") or [])
        wanted_frameworks = set(task.metadata.get("frameworks") or [])

        for cap in entry.profile.capabilities:
            if cap.matches_task_type(task.task_type.value):
                score.score += 20
                score.reasons.append(f"Matches task type: {cap.category.value}")
            languages = [lang for lang in cap.languages if lang in wanted_languages]
            if languages:
                score.score += 10 * len(languages)
                score.reasons.append(f"Supports languages: {', '.join(languages)}")
            frameworks = [fw for fw in cap.frameworks if fw in wanted_frameworks]
            if frameworks:
                score.score += 10 * len(frameworks)
                score.reasons.append(f"Supports frameworks: {', '.join(frameworks)}")
            if task.priority == TaskPriority.CRITICAL and cap.complexity == Complexity.COMPLEX:
                score.score += 15
                score.reasons.append("Can handle complex critical tasks")

        stats = entry.stats
        if stats.success_rate > _HIGH_SUCCESS_RATE:
            score.score += 10
            score.reasons.append(f"High success rate: {stats.success_rate:.1f}%")
        if stats.average_response_ms < _FAST_RESPONSE_MS:
            score.score += 5
            score.reasons.append("Fast response time")
        cost = entry.profile.cost_per_request
        if task.priority == TaskPriority.LOW and cost is not None and cost > _EXPENSIVE_PER_REQUEST:
            score.score -= 10
            score.reasons.append("High cost for low priority task")
        return score

    # -- bus handlers -----------------------------------------------------------

    def _entry_for(self, event: Event) -> Optional[_Entry]:
        agent_id = event.payload.get("agent_id") or (event.payload.get("task") or {}).get("assigned_agent")
        return self._entries.get(agent_id) if agent_id else None

    def _on_assigned(self, event: Event) -> None:
        with self._lock:
            entry = self._entry_for(event)
            if entry is not None:
                entry.stats.active_tasks.add(event.entity_id)

    def _on_completed(self, event: Event) -> None:
        with self._lock:
            entry = self._entry_for(event)
            if entry is None:
                return
            entry.stats.active_tasks.discard(event.entity_id)
            entry.stats.completed += 1
            duration = (event.payload.get("task") or {}).get("actual_duration")
            if isinstance(duration, (int, float)):
                entry.stats.total_duration_ms += float(duration)

    def _on_failed(self, event: Event) -> None:
        with self._lock:
            entry = self._entry_for(event)
            if entry is None:
                return
            entry.stats.active_tasks.discard(event.entity_id)
            entry.stats.failed += 1
