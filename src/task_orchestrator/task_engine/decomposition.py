"""Turn a free-form planning document into draft tasks.

Parsing runs in two stages:

1. :func:`split_sections` cuts the text before every line that starts with a
   numbered marker (``12. ``) or a markdown heading of one to three ``#``
   (``### ``).  Whitespace-only sections are dropped.
2. :func:`extract_task` reads one section: the marker line is the title, the
   remaining lines form the description, and ``type:`` / ``priority:`` field
   lines classify the task.

Nested numbered sub-lists use the same marker as top-level items, so each
sub-item becomes its own task.  That over-segmentation is kept as is.

The module also builds the planning prompt sent to an agent and derives the
project-level data (requirements, milestones, duration, risk factors) that a
decomposition attaches to its project.  Everything here is pure.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, Optional

from ..constants import DEFAULT_TASK_ESTIMATE_HOURS, SCHEDULE_BUFFER_FACTOR, WORK_HOURS_PER_DAY
from .model import Milestone, Project, Requirement, Task, TaskPriority, TaskType, coerce_enum

_MARKER_RE = re.compile(r"^(?:\d+\.\s|#{1,3}\s)")
_TITLE_RE = re.compile(r"^(?:\d+\.\s*|#{1,3}\s*)(.*)$")

_TYPE_WORDS = "|".join(t.value for t in TaskType)
_PRIORITY_WORDS = "|".join(p.value for p in TaskPriority)
_TYPE_RE = re.compile(rf"type:\s*({_TYPE_WORDS})", re.IGNORECASE)
_PRIORITY_RE = re.compile(rf"priority:\s*({_PRIORITY_WORDS})", re.IGNORECASE)
_FIELD_LINE_RE = re.compile(
    rf"^\s*(?:[-*]\s*)?(?:type:\s*(?:{_TYPE_WORDS})|priority:\s*(?:{_PRIORITY_WORDS}))\s*$",
    re.IGNORECASE,
)

_MILESTONE_PHASES: tuple[tuple[TaskType, str], ...] = (
    (TaskType.REQUIREMENT, "Requirements Complete"),
    (TaskType.DESIGN, "Design Complete"),
    (TaskType.IMPLEMENTATION, "Implementation Complete"),
    (TaskType.TEST, "Testing Complete"),
    (TaskType.DEPLOYMENT, "Deployment Complete"),
)

_REQUIREMENT_PRIORITY = {
    TaskPriority.CRITICAL: "must",
    TaskPriority.HIGH: "must",
    TaskPriority.MEDIUM: "should",
    TaskPriority.LOW: "could",
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def split_sections(content: str) -> list[str]:
    """Split *content* before every marker line; drop whitespace-only sections."""
    sections: list[str] = []
    current: list[str] = []
    for line in content.splitlines():
        if _MARKER_RE.match(line) and current:
            sections.append("\n".join(current))
            current = []
        current.append(line)
    if current:
        sections.append("\n".join(current))
    return [s for s in sections if s.strip()]


def extract_task(section: str, project_id: Optional[str]) -> Optional[Task]:
    """Build one draft task from a section, or None for a preamble or empty title."""
    first_line, _, rest = section.partition("\n")
    if not _MARKER_RE.match(first_line):
        return None
    match = _TITLE_RE.match(first_line)
    title = match.group(1).strip() if match else ""
    if not title:
        return None

    body = "\n".join(line for line in rest.splitlines() if not _FIELD_LINE_RE.match(line)).strip()
    type_match = _TYPE_RE.search(section)
    priority_match = _PRIORITY_RE.search(section)
    return Task(
        project_id=project_id,
        title=title,
        description=body or title,
        task_type=coerce_enum(TaskType, type_match.group(1) if type_match else None, TaskType.IMPLEMENTATION),
        priority=coerce_enum(TaskPriority, priority_match.group(1) if priority_match else None, TaskPriority.MEDIUM),
    )


def parse_task_decomposition(content: str, project_id: Optional[str] = None) -> list[Task]:
    """Parse a planning document into draft tasks in document order.

    The returned tasks are not stored anywhere; inserting them is the caller's
    job.
    """
    tasks: list[Task] = []
    for section in split_sections(content or ""):
        task = extract_task(section, project_id)
        if task is not None:
            tasks.append(task)
    return tasks


# ---------------------------------------------------------------------------
# Planning prompt
# ---------------------------------------------------------------------------

def build_decomposition_prompt(project: Project) -> str:
    prd = f"PRD: {project.prd}" if project.prd else ""
    return f"""Analyze the following project and create a detailed task breakdown:

Project: {project.name}
Description: {project.description}
{prd}

Create a comprehensive list of tasks including:
1. Requirements analysis
2. Design tasks
3. Implementation tasks
4. Testing tasks
5. Deployment tasks

For each task, specify:
- Clear title and description
- Task type (requirement/design/implementation/test/deployment)
- Priority (critical/high/medium/low)
- Estimated duration
- Dependencies on other tasks
- Required skills or technologies"""


def result_content(result: Any) -> str:
    """Pull the planning text out of an agent result."""
    if isinstance(result, dict):
        content = result.get("content")
        return "" if content is None else str(content)
    return "" if result is None else str(result)


# ---------------------------------------------------------------------------
# Derived project data
# ---------------------------------------------------------------------------

def derive_requirements(tasks: Iterable[Task]) -> list[Requirement]:
    """One functional requirement per ``requirement`` task."""
    out: list[Requirement] = []
    for task in tasks:
        if task.task_type != TaskType.REQUIREMENT:
            continue
        description = task.title if task.description in ("", task.title) else f"{task.title}: {task.description}"
        out.append(
            Requirement(
                kind="functional",
                category=str(task.metadata.get("category") or "general"),
                description=description,
                priority=_REQUIREMENT_PRIORITY[task.priority],
                source_task_id=task.id,
            )
        )
    return out


def derive_milestones(tasks: list[Task]) -> list[Milestone]:
    """A milestone per non-empty phase, then a final "Project Complete"."""
    milestones: list[Milestone] = []
    for task_type, name in _MILESTONE_PHASES:
        ids = [t.id for t in tasks if t.task_type == task_type]
        if ids:
            milestones.append(
                Milestone(name=name, description=f"All {task_type.value} tasks completed", task_ids=ids)
            )
    milestones.append(
        Milestone(
            name="Project Complete",
            description="All project tasks completed and delivered",
            task_ids=[t.id for t in tasks],
        )
    )
    return milestones


def _task_days(task: Task) -> float:
    raw = task.metadata.get("estimated_hours")
    try:
        hours = float(raw) if raw is not None else float(DEFAULT_TASK_ESTIMATE_HOURS)
    except (TypeError, ValueError):
        hours = float(DEFAULT_TASK_ESTIMATE_HOURS)
    return max(hours, 0.0) / WORK_HOURS_PER_DAY


def estimate_project_duration(tasks: list[Task]) -> int:
    """Days along the longest dependency chain, padded by the schedule buffer.

    Dependencies on tasks outside *tasks* are ignored; a cycle is cut where it
    closes.
    """
    by_id = {t.id: t for t in tasks}
    memo: dict[str, float] = {}

    def chain(task_id: str, visiting: set[str]) -> float:
        if task_id in memo:
            return memo[task_id]
        if task_id in visiting:
            return 0.0
        visiting.add(task_id)
        task = by_id[task_id]
        longest_dep = max(
            (chain(dep, visiting) for dep in task.dependencies if dep in by_id),
            default=0.0,
        )
        visiting.discard(task_id)
        memo[task_id] = _task_days(task) + longest_dep
        return memo[task_id]

    longest = max((chain(tid, set()) for tid in by_id), default=0.0)
    return math.ceil(round(longest * SCHEDULE_BUFFER_FACTOR, 6))


def _mentions_ml(text: str) -> bool:
    return "machine learning" in text or re.search(r"\b(?:ai|ml)\b", text) is not None


def identify_risk_factors(project: Project, tasks: list[Task], requirements: list[Requirement]) -> list[str]:
    """Keyword and shape heuristics over the project text and task graph."""
    text = " ".join(
        [project.prd or "", project.description or ""] + [r.description for r in requirements]
    ).lower()
    risks: list[str] = []

    if "real-time" in text or "realtime" in text:
        risks.append("Real-time requirements may add complexity and require specialized expertise")
    if "scale" in text or "high volume" in text or "million" in text:
        risks.append("Scalability requirements may require additional architecture considerations")
    if "integration" in text and sum(1 for t in tasks if "integration" in t.title.lower()) > 2:
        risks.append("Multiple third-party integrations increase complexity and potential points of failure")
    if "compliance" in text or "regulatory" in text:
        risks.append("Compliance requirements may extend timeline and require specialized knowledge")
    if _mentions_ml(text):
        risks.append("ML/AI components add uncertainty to timeline and require specialized skills")

    critical = sum(1 for t in tasks if t.priority == TaskPriority.CRITICAL)
    if tasks and critical > len(tasks) * 0.3:
        risks.append("High percentage of critical tasks indicates limited flexibility in prioritization")
    if any(len(t.dependencies) > 3 for t in tasks):
        risks.append("Complex task dependencies may create bottlenecks and delay project completion")
    return risks
