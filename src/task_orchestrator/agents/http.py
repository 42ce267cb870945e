"""Agent that forwards task execution to a remote HTTP service."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

import httpx

from ..constants import DEFAULT_AGENT_TIMEOUT_SECONDS
from .interfaces import AgentRequest, AgentResponse
from .registry import AgentProfile, AgentRegistry

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    401: "Authentication failed",
    429: "Rate limit exceeded",
    503: "Service temporarily unavailable",
}


class HttpAgent:
    """POST the request JSON to ``<endpoint>/execute`` and map the JSON reply.

    A non-2xx reply becomes an unsuccessful :class:`AgentResponse`.  Transport
    errors and timeouts propagate to the caller.

    Args:
        agent_id: Registry id of the agent.
        endpoint: Base URL of the remote agent service.
        api_key: Bearer token sent with every request, if any.
        timeout: Client timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        agent_id: str,
        endpoint: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_AGENT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.agent_id = agent_id
        self.endpoint = endpoint.rstrip("/")
        headers = {"Content-Type": "application/json", "User-Agent": "task-orchestrator"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.endpoint,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def execute(self, request: AgentRequest) -> AgentResponse:
        started = time.monotonic()
        logger.debug("POST %s/execute task=%s", self.endpoint, request.task_id)
        response = await self._client.post("/execute", json=request.to_dict())
        elapsed_ms = (time.monotonic() - started) * 1000.0
        if response.is_error:
            message = _STATUS_MESSAGES.get(response.status_code, f"HTTP {response.status_code}")
            logger.error("Agent %s returned %s for task %s", self.agent_id, response.status_code, request.task_id)
            return AgentResponse(
                task_id=request.task_id,
                agent_id=self.agent_id,
                success=False,
                error=message,
                duration=elapsed_ms,
            )
        data: Any = response.json()
        if not isinstance(data, dict):
            data = {"success": True, "result": data}
        parsed = AgentResponse.from_dict(data, task_id=request.task_id, agent_id=self.agent_id)
        if parsed.duration is None:
            parsed.duration = elapsed_ms
        return parsed

    async def aclose(self) -> None:
        await self._client.aclose()


def http_agent_from_config(entry: dict[str, Any]) -> tuple[HttpAgent, AgentProfile]:
    """Build an agent and its profile from one ``agents:`` config entry.

    The API key is read from the environment variable named by ``api_key_env``.
    """
    agent_id = str(entry.get("id") or "").strip()
    endpoint = str(entry.get("endpoint") or "").strip()
    if not agent_id or not endpoint:
        raise ValueError("Agent config entries require 'id' and 'endpoint'")
    key_env = entry.get("api_key_env")
    agent = HttpAgent(
        agent_id,
        endpoint,
        api_key=os.environ.get(str(key_env)) if key_env else None,
        timeout=float(entry.get("timeout_seconds") or DEFAULT_AGENT_TIMEOUT_SECONDS),
    )
    return agent, AgentProfile.from_dict(entry)


def register_configured_agents(registry: AgentRegistry, entries: list[dict[str, Any]]) -> list[HttpAgent]:
    """Register every valid config entry; invalid entries are logged and skipped."""
    agents: list[HttpAgent] = []
    for entry in entries:
        try:
            agent, profile = http_agent_from_config(entry)
            registry.register(agent, profile)
        except ValueError as exc:
            logger.warning("Skipping agent config %r: %s", entry.get("id"), exc)
            continue
        agents.append(agent)
    return agents
