from __future__ import annotations

import logging
from typing import Any, Optional

from ..agents.http import HttpAgent, register_configured_agents
from ..agents.interfaces import AgentDirectory, AgentResponse
from ..agents.registry import AgentRegistry
from ..config import OrchestratorSettings
from ..constants import DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
from ..errors import ExecutionFailure, NoAvailableAgent
from ..events.bus import Event, EventBus
from ..integrations.git import GitAutoCommitter, GitCommitter
from ..integrations.notifications import Notifier, build_notifier
from ..task_engine.decomposition import build_decomposition_prompt, parse_task_decomposition, result_content
from ..task_engine.engine import Refinement, TaskEngine
from ..task_engine.model import Task, TaskPriority, TaskType
from ..task_engine.store import TaskStore
from .dispatch import Dispatcher
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class OrchestratorService:
    """Own the engine's components and their start/stop lifecycle."""

    def __init__(
        self,
        store: TaskStore,
        bus: EventBus,
        directory: AgentDirectory,
        settings: OrchestratorSettings,
        *,
        git: Optional[GitCommitter] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.directory = directory
        self.settings = settings
        self.engine = TaskEngine(store, bus)
        self.dispatcher = Dispatcher(store, directory, bus, git=git, notifier=notifier)
        self.scheduler = Scheduler(store, self.dispatcher, directory, settings, bus=bus)
        self._owned_agents: list[HttpAgent] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    async def shutdown(self, *, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS) -> None:
        await self.scheduler.stop(timeout)
        for agent in self._owned_agents:
            await agent.aclose()
        self._owned_agents.clear()
        if isinstance(self.directory, AgentRegistry):
            self.directory.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def dispatch_task(self, task_id: str) -> AgentResponse:
        return await self.dispatcher.dispatch(task_id)

    async def decompose_project(self, project_id: str) -> list[Task]:
        """Ask an agent for a task breakdown of the project and materialize it.

        The planning request runs as a meta-task that is neither queued nor
        attached to the project, and that is removed again when no agent is
        available.
        """
        project = self.engine.get_project(project_id)
        meta = self.engine.create_task(
            build_decomposition_prompt(project),
            task_type=TaskType.REQUIREMENT,
            priority=TaskPriority.HIGH,
            metadata={"project_id": project.id, "decomposition": True},
            enqueue=False,
        )
        logger.info("Decomposing project %s via task %s", project_id, meta.id)
        try:
            response = await self.dispatcher.dispatch(meta.id)
        except NoAvailableAgent:
            self.engine.delete_task(meta.id)
            raise
        if not response.success:
            raise ExecutionFailure(
                f"Decomposition of project {project_id} failed: {response.error or 'agent reported failure'}",
                details={"project_id": project_id, "task_id": meta.id},
            )
        tasks = parse_task_decomposition(result_content(response.result), project.id)
        return self.engine.apply_decomposition(project.id, tasks)

    def refine_project(self, project_id: str, refinement: Refinement) -> dict[str, Any]:
        return self.engine.refine_decomposition(project_id, refinement)

    async def capacity_metrics(self) -> dict[str, Any]:
        available = await self.directory.available_agents()
        running = self.dispatcher.running_snapshot()
        metrics: dict[str, Any] = {
            "max_concurrent_tasks": self.settings.max_concurrent_tasks,
            "in_flight": len(running),
            "utilization": round(len(running) / self.settings.max_concurrent_tasks, 3),
            "running": [r.to_dict() for r in running],
            "queue_depth": len(self.store.queue_snapshot()),
            "eligible": len(self.store.eligible_tasks()),
            "available_agents": list(available),
            "scheduler_running": self.scheduler.running,
        }
        if isinstance(self.directory, AgentRegistry):
            metrics["agents"] = self.directory.describe()
        return metrics

    def recent_events(self, limit: int = 100) -> list[Event]:
        return self.bus.recent(limit)


def build_service(
    settings: Optional[OrchestratorSettings] = None,
    *,
    directory: Optional[AgentDirectory] = None,
    git: Optional[GitCommitter] = None,
    notifier: Optional[Notifier] = None,
) -> OrchestratorService:
    """Wire a service from settings.

    Without an explicit *directory* an :class:`AgentRegistry` is created and
    the ``agents`` config entries are registered as HTTP agents.
    """
    settings = settings or OrchestratorSettings()
    store = TaskStore(detect_cycles=settings.detect_dependency_cycles)
    bus = EventBus()

    owned: list[HttpAgent] = []
    if directory is None:
        registry = AgentRegistry(bus)
        owned = register_configured_agents(registry, settings.agents)
        directory = registry

    if git is None and settings.git_enabled:
        if settings.git_repo_path is None:
            logger.warning("git.enabled is set without git.repo_path; auto-commit disabled")
        else:
            git = GitAutoCommitter(settings.git_repo_path)
    if notifier is None:
        notifier = build_notifier(settings.desktop_notifications)

    service = OrchestratorService(store, bus, directory, settings, git=git, notifier=notifier)
    service._owned_agents.extend(owned)
    return service
