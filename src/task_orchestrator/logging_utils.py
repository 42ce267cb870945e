"""Configure logging and format engine events for log lines."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from loguru import logger

_DETAIL_MAX_CHARS = 240


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru and the stdlib root logger with the specified level.

    Core modules log through :mod:`logging`; the server, CLI and integrations
    log through loguru.  Both end up on stderr.
    """
    level = level.upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s\n%(message)s",
        stream=sys.stderr,
        force=True,
    )


def _truncate(text: str, limit: int = _DETAIL_MAX_CHARS) -> str:
    return (text[:limit] + "…") if len(text) > limit else text


def summarize_event(event: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a bus event.

    Args:
        event: :class:`~task_orchestrator.events.bus.Event` instance (or None).

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if event is None:
        return {"event": None}

    event_type = getattr(event, "event_type", None)
    d: dict[str, Any] = {"event": getattr(event_type, "value", str(event_type))}
    entity_id = getattr(event, "entity_id", None)
    if entity_id is not None:
        d["entity_id"] = entity_id

    payload = getattr(event, "payload", None) or {}
    task = payload.get("task")
    if isinstance(task, dict):
        d["status"] = task.get("status")
        d["priority"] = task.get("priority")
        if task.get("assigned_agent"):
            d["agent_id"] = task["assigned_agent"]
    if payload.get("agent_id"):
        d["agent_id"] = payload["agent_id"]
    error = payload.get("error")
    if error:
        d["error"] = _truncate(str(error))
    project = payload.get("project")
    if isinstance(project, dict):
        d["status"] = project.get("status")
        d["tasks_n"] = len(project.get("task_ids") or [])
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except Exception:
        return str(obj)
