from __future__ import annotations

import pytest

from task_orchestrator.config import OrchestratorSettings
from task_orchestrator.events.bus import EventBus
from task_orchestrator.task_engine.store import TaskStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def settings() -> OrchestratorSettings:
    return OrchestratorSettings(max_concurrent_tasks=10, tick_interval_seconds=0.01)
