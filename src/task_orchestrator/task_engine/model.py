"""Task and project model for the orchestration engine.

Tasks move along a single forward path: ``pending → assigned → in_progress``
and then ``completed`` or ``failed``.  Projects group tasks together with the
requirements and milestones derived from a planning document.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskType(str, Enum):
    """The kind of work a task represents."""

    REQUIREMENT = "requirement"
    DESIGN = "design"
    IMPLEMENTATION = "implementation"
    TEST = "test"
    DEPLOYMENT = "deployment"
    REVIEW = "review"


class TaskPriority(str, Enum):
    """Priority level; ``critical`` is most urgent."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def sort_key(self) -> int:
        return {"critical": 0, "high": 1, "medium": 2, "low": 3}[self.value]


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED},
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    """Short human-friendly id: ``<prefix>-<10hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def coerce_enum(enum_cls: type[Enum], raw: Any, default: Enum) -> Any:
    """Return ``enum_cls(raw)`` or *default* when *raw* is missing or unknown."""
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).strip().lower())
    except (ValueError, KeyError):
        return default


def unique_dependencies(task_id: str, dependencies: list[str]) -> list[str]:
    """Drop duplicates and self-references while keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for dep in dependencies:
        dep = str(dep)
        if not dep or dep == task_id or dep in seen:
            continue
        seen.add(dep)
        out.append(dep)
    return out


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work executed by exactly one agent."""

    # Identity
    id: str = field(default_factory=lambda: new_id("task"))
    project_id: Optional[str] = None
    title: str = ""
    description: str = ""

    # Classification
    task_type: TaskType = TaskType.IMPLEMENTATION
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING

    # Dependencies
    dependencies: list[str] = field(default_factory=list)

    # Execution tracking (populated by the dispatch pipeline)
    assigned_agent: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    actual_duration: Optional[float] = None  # milliseconds

    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    # Extensible metadata
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.dependencies = unique_dependencies(self.id, list(self.dependencies or []))

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for JSON responses and event payloads."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)
        task_id = str(d.get("id") or new_id("task"))
        return cls(
            id=task_id,
            project_id=d.get("project_id"),
            title=str(d.get("title") or ""),
            description=str(d.get("description") or ""),
            task_type=coerce_enum(TaskType, d.get("task_type"), TaskType.IMPLEMENTATION),
            priority=coerce_enum(TaskPriority, d.get("priority"), TaskPriority.MEDIUM),
            status=coerce_enum(TaskStatus, d.get("status"), TaskStatus.PENDING),
            dependencies=list(d.get("dependencies") or []),
            assigned_agent=d.get("assigned_agent"),
            started_at=d.get("started_at"),
            completed_at=d.get("completed_at"),
            output=d.get("output"),
            error=d.get("error"),
            actual_duration=d.get("actual_duration"),
            created_at=str(d.get("created_at") or now_iso()),
            updated_at=str(d.get("updated_at") or now_iso()),
            metadata=dict(d.get("metadata") or {}),
        )

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = now_iso()

    def can_transition(self, new_status: TaskStatus) -> bool:
        return new_status in VALID_TRANSITIONS[self.status]

    def transition(self, new_status: TaskStatus) -> None:
        """Move to *new_status* with timestamp bookkeeping.

        Raises ``ValueError`` for a transition outside the state machine.
        """
        if not self.can_transition(new_status):
            raise ValueError(f"Invalid transition {self.status.value} -> {new_status.value}")
        self.status = new_status
        if new_status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            self.completed_at = now_iso()
        self.touch()


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------

@dataclass
class Requirement:
    id: str = field(default_factory=lambda: new_id("req"))
    kind: str = "functional"  # functional | non_functional | constraint
    category: str = "general"
    description: str = ""
    priority: str = "should"  # must | should | could | wont
    status: str = "draft"  # draft | approved | implemented | verified
    source_task_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Requirement":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class Milestone:
    id: str = field(default_factory=lambda: new_id("ms"))
    name: str = ""
    description: str = ""
    task_ids: list[str] = field(default_factory=list)
    status: str = "pending"  # pending | in_progress | completed | missed

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Milestone":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class Project:
    """A named collection of tasks derived from a planning document."""

    id: str = field(default_factory=lambda: new_id("proj"))
    name: str = ""
    description: str = ""
    prd: Optional[str] = None
    task_ids: list[str] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)
    requirements: list[Requirement] = field(default_factory=list)
    status: ProjectStatus = ProjectStatus.PLANNING
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        return cls(
            id=str(data.get("id") or new_id("proj")),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            prd=data.get("prd"),
            task_ids=list(data.get("task_ids") or []),
            milestones=[Milestone.from_dict(m) for m in data.get("milestones") or [] if isinstance(m, dict)],
            requirements=[Requirement.from_dict(r) for r in data.get("requirements") or [] if isinstance(r, dict)],
            status=coerce_enum(ProjectStatus, data.get("status"), ProjectStatus.PLANNING),
            metadata=dict(data.get("metadata") or {}),
            created_at=str(data.get("created_at") or now_iso()),
            updated_at=str(data.get("updated_at") or now_iso()),
        )

    def touch(self) -> None:
        self.updated_at = now_iso()
