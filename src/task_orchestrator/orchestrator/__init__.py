"""Dispatch pipeline, scheduling loop and the service that wires them."""

from .dispatch import Dispatcher, RunningTask
from .scheduler import Scheduler
from .service import OrchestratorService, build_service

__all__ = [
    "Dispatcher",
    "RunningTask",
    "Scheduler",
    "OrchestratorService",
    "build_service",
]
