"""Load orchestrator configuration from an optional YAML file and the environment."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .constants import (
    CONFIG_FILE_ENV,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_CONCURRENT_TASKS,
    DEFAULT_TICK_INTERVAL_SECONDS,
    LOG_LEVEL_ENV,
    MAX_CONCURRENT_TASKS_ENV,
    TICK_INTERVAL_ENV,
)

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorSettings:
    """Runtime settings for the engine.

    ``max_concurrent_tasks`` is read by the scheduler on every tick, so
    changing it on a live instance takes effect at the next tick.
    """

    max_concurrent_tasks: int = DEFAULT_MAX_CONCURRENT_TASKS
    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS
    wake_on_completion: bool = False
    detect_dependency_cycles: bool = False
    git_enabled: bool = False
    git_repo_path: Optional[Path] = None
    desktop_notifications: bool = False
    log_level: str = DEFAULT_LOG_LEVEL
    agents: list[dict[str, Any]] = field(default_factory=list)


def load_orchestrator_config(path: Optional[Path]) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        path: YAML (or JSON) config path. ``None`` means no file.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    if path is None or not path.exists():
        return {}, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
    except OSError as exc:
        return {}, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return {}, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return {}, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return {}, None
    if not isinstance(data, dict):
        return {}, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _coerce_int(raw: Any, default: int, name: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    if value < 1:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, raw, default)
        return default
    return value


def _coerce_float(raw: Any, default: float, name: str) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, raw, default)
        return default
    return value


def settings_from_config(
    config: dict[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> OrchestratorSettings:
    """Build settings from a config mapping, letting environment variables win.

    Args:
        config: Mapping returned by :func:`load_orchestrator_config`.
        environ: Environment to read overrides from (defaults to ``os.environ``).

    Returns:
        The resolved :class:`OrchestratorSettings`.
    """
    env = os.environ if environ is None else environ
    orch = _get_nested(config, "orchestrator")
    orch = orch if isinstance(orch, dict) else {}
    git = _get_nested(config, "git")
    git = git if isinstance(git, dict) else {}

    max_concurrent = _coerce_int(
        orch.get("max_concurrent_tasks"), DEFAULT_MAX_CONCURRENT_TASKS, "max_concurrent_tasks"
    )
    if env.get(MAX_CONCURRENT_TASKS_ENV):
        max_concurrent = _coerce_int(env.get(MAX_CONCURRENT_TASKS_ENV), max_concurrent, MAX_CONCURRENT_TASKS_ENV)

    tick_interval = _coerce_float(
        orch.get("tick_interval_seconds"), DEFAULT_TICK_INTERVAL_SECONDS, "tick_interval_seconds"
    )
    if env.get(TICK_INTERVAL_ENV):
        tick_interval = _coerce_float(env.get(TICK_INTERVAL_ENV), tick_interval, TICK_INTERVAL_ENV)

    repo_raw = git.get("repo_path")
    agents_raw = config.get("agents")

    return OrchestratorSettings(
        max_concurrent_tasks=max_concurrent,
        tick_interval_seconds=tick_interval,
        wake_on_completion=bool(orch.get("wake_on_completion", False)),
        detect_dependency_cycles=bool(orch.get("detect_dependency_cycles", False)),
        git_enabled=bool(git.get("enabled", False)),
        git_repo_path=Path(str(repo_raw)) if repo_raw else None,
        desktop_notifications=bool(_get_nested(config, "notifications", "desktop") or False),
        log_level=str(env.get(LOG_LEVEL_ENV) or config.get("log_level") or DEFAULT_LOG_LEVEL).upper(),
        agents=[dict(a) for a in agents_raw if isinstance(a, dict)] if isinstance(agents_raw, list) else [],
    )


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> OrchestratorSettings:
    """Resolve settings from *path* (or ``$TASK_ORCHESTRATOR_CONFIG``) plus the environment.

    A config file that fails to parse is reported and ignored.
    """
    env = os.environ if environ is None else environ
    if path is None and env.get(CONFIG_FILE_ENV):
        path = Path(env[CONFIG_FILE_ENV])
    config, err = load_orchestrator_config(path)
    if err:
        logger.warning("Ignoring unreadable config file: %s", err)
    return settings_from_config(config, env)
