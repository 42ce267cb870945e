"""Agent dispatch pipeline: pick an agent, run the task, record the outcome.

A dispatch claims its task with a compare-and-set ``pending -> assigned`` on
the store, so a manual dispatch racing the scheduler for the same task ends
with exactly one winner; the loser gets :class:`TaskConflict`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..agents.interfaces import Agent, AgentDirectory, AgentRequest, AgentResponse
from ..errors import ExecutionFailure, NoAvailableAgent, TaskConflict, TaskNotFound
from ..events.bus import EventBus, EventType
from ..integrations.git import GitCommitter, NullGitCommitter
from ..integrations.notifications import Notifier, NullNotifier
from ..task_engine.model import Task, TaskStatus, now_iso
from ..task_engine.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunningTask:
    task_id: str
    agent_id: str
    started_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"task_id": self.task_id, "agent_id": self.agent_id, "started_at": self.started_at}


class Dispatcher:
    """Run single tasks through the agent returned by the directory.

    Parameters
    ----------
    store:
        Task store holding the tasks to dispatch.
    directory:
        Agent directory used to rank and resolve agents.
    bus:
        Receives ``task:assigned``, ``task:completed``, ``task:failed`` and
        ``task:error``.
    git, notifier:
        Best-effort collaborators; failures are logged and never change the
        task outcome.  Default to no-ops.
    """

    def __init__(
        self,
        store: TaskStore,
        directory: AgentDirectory,
        bus: EventBus,
        *,
        git: Optional[GitCommitter] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.directory = directory
        self.bus = bus
        self.git = git or NullGitCommitter()
        self.notifier = notifier or NullNotifier()
        self._running: dict[str, RunningTask] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._running)

    def running_snapshot(self) -> list[RunningTask]:
        return list(self._running.values())

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    async def dispatch(self, task_id: str) -> AgentResponse:
        """Execute one pending task and return the agent's response.

        Raises:
            TaskNotFound: unknown task id.
            TaskConflict: the task is not ``pending`` or another caller
                claimed it first.
            NoAvailableAgent: the directory has no candidate; the task stays
                ``pending``.
            ExecutionFailure: the agent call raised; the task is ``failed``.
        """
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.status != TaskStatus.PENDING:
            raise TaskConflict(task_id, task.status.value)

        ranking = await self.directory.ranked_agents_for(task)
        agent: Optional[Agent] = self.directory.get_agent(ranking[0].agent_id) if ranking else None
        if agent is None:
            logger.info("No available agent for task %s", task_id)
            raise NoAvailableAgent(task_id)
        agent_id = ranking[0].agent_id

        started_at = now_iso()
        claimed = self.store.try_transition(
            task_id,
            [TaskStatus.PENDING],
            TaskStatus.ASSIGNED,
            assigned_agent=agent_id,
            started_at=started_at,
        )
        if claimed is None:
            raise TaskConflict(task_id, self._status_of(task_id))

        self._running[task_id] = RunningTask(task_id=task_id, agent_id=agent_id, started_at=started_at)
        try:
            logger.info("Assigned task %s to agent %s (score=%s)", task_id, agent_id, ranking[0].score)
            self.bus.emit(EventType.TASK_ASSIGNED, task_id, {"task": claimed.to_dict(), "agent_id": agent_id})
            return await self._execute(claimed, agent, agent_id)
        finally:
            self._running.pop(task_id, None)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, task: Task, agent: Agent, agent_id: str) -> AgentResponse:
        if self.store.try_transition(task.id, [TaskStatus.ASSIGNED], TaskStatus.IN_PROGRESS) is None:
            raise TaskConflict(task.id, self._status_of(task.id))

        request = AgentRequest(
            task_id=task.id,
            prompt=task.description,
            context=dict(task.metadata),
            priority=task.priority.value,
        )
        started = time.monotonic()
        try:
            response = await agent.execute(request)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Agent %s raised while executing task %s: %s", agent_id, task.id, message)
            failed = self._finish(task.id, TaskStatus.FAILED, error=message)
            self.bus.emit(EventType.TASK_ERROR, task.id, {"task": failed.to_dict(), "agent_id": agent_id, "error": message})
            raise ExecutionFailure(
                f"Agent {agent_id} failed to execute task {task.id}: {message}",
                details={"task_id": task.id, "agent_id": agent_id},
            ) from exc
        elapsed_ms = (time.monotonic() - started) * 1000.0

        if response.success:
            await self._complete(task.id, agent_id, response, elapsed_ms)
        else:
            await self._fail(task.id, agent_id, response, elapsed_ms)
        return response

    async def _complete(self, task_id: str, agent_id: str, response: AgentResponse, elapsed_ms: float) -> None:
        duration = response.duration if response.duration is not None else elapsed_ms
        done = self._finish(task_id, TaskStatus.COMPLETED, output=response.result, actual_duration=duration)
        logger.info("Task %s completed by %s in %.0fms", task_id, agent_id, duration)

        try:
            commit = await self.git.auto_commit(task_id, done.title)
        except Exception:
            logger.exception("Git auto-commit failed for task %s", task_id)
            commit = None
        if commit:
            done = self.store.update_task(task_id, {"metadata": {**done.metadata, "git_commit": commit}}) or done

        self.bus.emit(
            EventType.TASK_COMPLETED,
            task_id,
            {"task": done.to_dict(), "agent_id": agent_id, "response": response.to_dict()},
        )
        try:
            await self.notifier.notify_task_completed(done)
        except Exception:
            logger.exception("Completion notification failed for task %s", task_id)

    async def _fail(self, task_id: str, agent_id: str, response: AgentResponse, elapsed_ms: float) -> None:
        error = response.error or "Agent reported failure"
        duration = response.duration if response.duration is not None else elapsed_ms
        failed = self._finish(task_id, TaskStatus.FAILED, error=error, output=response.result, actual_duration=duration)
        logger.warning("Task %s failed on agent %s: %s", task_id, agent_id, error)

        self.bus.emit(EventType.TASK_FAILED, task_id, {"task": failed.to_dict(), "agent_id": agent_id, "error": error})
        try:
            await self.notifier.notify_task_failed(failed, error)
        except Exception:
            logger.exception("Failure notification failed for task %s", task_id)

    def _finish(self, task_id: str, status: TaskStatus, **changes: Any) -> Task:
        task = self.store.try_transition(task_id, [TaskStatus.IN_PROGRESS], status, **changes)
        if task is not None:
            return task
        current = self.store.get_task(task_id)
        if current is None:
            raise TaskNotFound(task_id)
        logger.warning(
            "Task %s left in_progress before finishing (now %s); outcome %s not recorded",
            task_id,
            current.status.value,
            status.value,
        )
        return current

    def _status_of(self, task_id: str) -> str:
        task = self.store.get_task(task_id)
        return task.status.value if task else "deleted"
