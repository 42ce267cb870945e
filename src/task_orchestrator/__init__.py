"""Provide the public `task_orchestrator` package exports."""

from __future__ import annotations

from .orchestrator.service import OrchestratorService, build_service

__all__ = ["OrchestratorService", "build_service"]
