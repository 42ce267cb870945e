"""Contracts between the orchestrator and the agents that execute tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from ..task_engine.model import Task


@dataclass
class AgentRequest:
    task_id: str
    prompt: str
    context: dict[str, Any] = field(default_factory=dict)
    priority: str = "medium"

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "prompt": self.prompt,
            "context": self.context,
            "priority": self.priority,
        }


@dataclass
class AgentResponse:
    """Outcome of one agent call.

    ``duration`` is the agent-reported execution time in milliseconds; when
    it is missing the dispatcher measures wall time instead.
    """

    task_id: str
    agent_id: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    duration: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, task_id: str, agent_id: str) -> "AgentResponse":
        duration = data.get("duration")
        return cls(
            task_id=str(data.get("task_id") or task_id),
            agent_id=str(data.get("agent_id") or agent_id),
            success=bool(data.get("success", False)),
            result=data.get("result"),
            error=data.get("error"),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
        )


@dataclass
class AgentScore:
    agent_id: str
    score: float
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"agent_id": self.agent_id, "score": self.score, "reasons": list(self.reasons)}


@runtime_checkable
class Agent(Protocol):
    agent_id: str

    async def execute(self, request: AgentRequest) -> AgentResponse: ...


class AgentDirectory(Protocol):
    """Where the orchestrator finds agents for a task."""

    async def ranked_agents_for(self, task: Task) -> list[AgentScore]:
        """Candidates for *task*, best first; empty when none can take it."""
        ...

    async def available_agents(self) -> list[str]:
        """Ids of agents that can accept work right now."""
        ...

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...
