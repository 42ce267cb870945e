"""Commit the working tree after a task completes.

The dispatcher talks to a :class:`GitCommitter`.  :class:`NullGitCommitter`
is the default; :class:`GitAutoCommitter` shells out to ``git`` in a worker
thread, one operation at a time per committer.
"""

from __future__ import annotations

import asyncio
import subprocess
import threading
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger

DEFAULT_COMMIT_PREFIX = "[AI-Task]"


class GitCommitter(Protocol):
    async def auto_commit(self, task_id: str, title: str) -> Optional[str]:
        """Commit pending changes for a task; return the commit hash or None."""
        ...


class NullGitCommitter:
    async def auto_commit(self, task_id: str, title: str) -> Optional[str]:
        return None


def _git_is_repo(repo_path: Path) -> bool:
    result = subprocess.run(
        ["git", "rev-parse", "--is-inside-work-tree"],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=False,
    )
    return result.returncode == 0 and result.stdout.strip().lower() == "true"


def _git_status_lines(repo_path: Path) -> list[str]:
    result = subprocess.run(
        ["git", "status", "--porcelain"],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=True,
    )
    return [line for line in result.stdout.splitlines() if line.strip()]


def _git_head_sha(repo_path: Path) -> Optional[str]:
    result = subprocess.run(
        ["git", "rev-parse", "HEAD"],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def summarize_status(lines: list[str]) -> str:
    """Describe ``git status --porcelain`` output as "N files added, ..."."""
    added = modified = deleted = 0
    for line in lines:
        code = line[:2]
        if "?" in code or "A" in code:
            added += 1
        elif "D" in code:
            deleted += 1
        else:
            modified += 1
    parts = []
    if added:
        parts.append(f"{added} files added")
    if modified:
        parts.append(f"{modified} files modified")
    if deleted:
        parts.append(f"{deleted} files deleted")
    return ", ".join(parts)


class GitAutoCommitter:
    """Stage everything and commit it with a task-tagged message.

    Args:
        repo_path: Working tree to commit in.
        commit_prefix: Prefix for the commit subject.
    """

    def __init__(self, repo_path: Path, commit_prefix: str = DEFAULT_COMMIT_PREFIX) -> None:
        self.repo_path = Path(repo_path)
        self.commit_prefix = commit_prefix
        self._lock = threading.Lock()

    def commit_message(self, task_id: str, title: str, changes: str) -> str:
        return (
            f"{self.commit_prefix} Complete task: {title}\n\n"
            f"Changes: {changes}\n\n"
            f"Task ID: {task_id}"
        )

    def _commit_sync(self, task_id: str, title: str) -> Optional[str]:
        with self._lock:
            if not _git_is_repo(self.repo_path):
                raise RuntimeError(f"{self.repo_path} is not a git repository")
            lines = _git_status_lines(self.repo_path)
            if not lines:
                logger.info("No changes to commit for task {}", task_id)
                return None
            message = self.commit_message(task_id, title, summarize_status(lines))
            subprocess.run(["git", "add", "-A", "--", "."], cwd=self.repo_path, check=True, capture_output=True)
            subprocess.run(["git", "commit", "-m", message], cwd=self.repo_path, check=True, capture_output=True)
            sha = _git_head_sha(self.repo_path)
            logger.info("Created commit {} for task {}", sha, task_id)
            return sha

    async def auto_commit(self, task_id: str, title: str) -> Optional[str]:
        return await asyncio.to_thread(self._commit_sync, task_id, title)
