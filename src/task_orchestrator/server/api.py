"""FastAPI application for the task orchestrator."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..config import OrchestratorSettings
from ..errors import OrchestratorError
from ..logging_utils import summarize_event
from ..orchestrator.service import OrchestratorService, build_service
from .project_api import create_project_router
from .task_api import create_task_router


def create_app(
    service: Optional[OrchestratorService] = None,
    settings: Optional[OrchestratorSettings] = None,
    enable_cors: bool = True,
    start_scheduler: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        service: Service to serve; built from *settings* when omitted.
        settings: Settings used to build the service.
        enable_cors: Whether to enable CORS.
        start_scheduler: Run the scheduling loop for the app's lifetime.

    Returns:
        Configured FastAPI app.
    """
    service = service or build_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_scheduler:
            service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(
        title="Task Orchestrator",
        description="Dispatch project tasks to a pool of agents",
        version="0.1.0",
        lifespan=lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.service = service

    def _get_service() -> OrchestratorService:
        return app.state.service

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.warning("{} {} failed: {}", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    app.include_router(create_project_router(_get_service))
    app.include_router(create_task_router(_get_service))

    @app.get("/api/capacity/metrics")
    async def capacity_metrics() -> dict[str, Any]:
        return await _get_service().capacity_metrics()

    @app.get("/api/events")
    async def recent_events(limit: int = Query(100, ge=1, le=1000)) -> dict[str, Any]:
        events = _get_service().recent_events(limit)
        return {
            "events": [e.to_dict() for e in events],
            "summaries": [summarize_event(e) for e in events],
        }

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        svc = _get_service()
        return {
            "status": "ok",
            "scheduler_running": svc.scheduler.running,
            "in_flight": svc.dispatcher.in_flight_count,
        }

    return app
