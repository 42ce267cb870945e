"""Typed error kinds raised by the orchestration engine.

Every failure that leaves the core carries an :class:`ErrorKind`.  The HTTP
layer maps the kind to a status code through :data:`HTTP_STATUS_BY_KIND`
instead of inspecting message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    NO_AVAILABLE_AGENT = "no_available_agent"
    VALIDATION_FAILURE = "validation_failure"
    EXECUTION_FAILURE = "execution_failure"
    CONFLICT = "conflict"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NO_AVAILABLE_AGENT: 503,
    ErrorKind.VALIDATION_FAILURE: 422,
    ErrorKind.EXECUTION_FAILURE: 502,
    ErrorKind.CONFLICT: 409,
}


class OrchestratorError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.EXECUTION_FAILURE

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "kind": self.kind.value}
        if self.details:
            payload["details"] = self.details
        return payload


class TaskNotFound(OrchestratorError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", details={"task_id": task_id})
        self.task_id = task_id


class ProjectNotFound(OrchestratorError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}", details={"project_id": project_id})
        self.project_id = project_id


class NoAvailableAgent(OrchestratorError):
    kind = ErrorKind.NO_AVAILABLE_AGENT

    def __init__(self, task_id: str) -> None:
        super().__init__(f"No suitable agent found for task {task_id}", details={"task_id": task_id})
        self.task_id = task_id


class ValidationFailure(OrchestratorError):
    kind = ErrorKind.VALIDATION_FAILURE


class ExecutionFailure(OrchestratorError):
    kind = ErrorKind.EXECUTION_FAILURE


class TaskConflict(OrchestratorError):
    """The task is not in the status the operation requires (e.g. already claimed)."""

    kind = ErrorKind.CONFLICT

    def __init__(self, task_id: str, status: str, action: str = "dispatched") -> None:
        super().__init__(
            f"Task {task_id} cannot be {action} from status={status}",
            details={"task_id": task_id, "status": status},
        )
        self.task_id = task_id
        self.status = status
