"""Tests for notifications module."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest

from task_orchestrator.integrations.notifications import DesktopNotifier, NullNotifier, build_notifier
from task_orchestrator.task_engine.model import Task


def _enabled_notifier() -> tuple[DesktopNotifier, MagicMock]:
    backend = MagicMock()
    notifier = DesktopNotifier(enabled=False)
    notifier.enabled = True
    notifier._notifier = backend
    return notifier, backend


class TestDesktopNotifier:
    """Test DesktopNotifier class."""

    def test_init_disabled(self):
        """Test initialization with notifications disabled."""
        notifier = DesktopNotifier(enabled=False)
        assert notifier.enabled is False
        assert notifier._notifier is None

    def test_init_import_error(self):
        """Test initialization when plyer is not installed."""
        with patch.dict(sys.modules, {"plyer": None}):
            notifier = DesktopNotifier(enabled=True)
        assert notifier.enabled is False
        assert notifier._notifier is None

    @pytest.mark.anyio
    async def test_notify_task_completed(self):
        """Test sending task completed notification."""
        notifier, backend = _enabled_notifier()
        task = Task(id="task-abc", title="Build API", assigned_agent="agent-7")

        await notifier.notify_task_completed(task)

        backend.notify.assert_called_once()
        call_args = backend.notify.call_args[1]
        assert call_args["title"] == "✅ Task Complete: Build API"
        assert "task-abc" in call_args["message"]
        assert "agent-7" in call_args["message"]
        assert call_args["timeout"] == 10

    @pytest.mark.anyio
    async def test_notify_task_failed(self):
        """Test failed notification stays until dismissed and truncates the error."""
        notifier, backend = _enabled_notifier()

        await notifier.notify_task_failed(Task(title="Deploy"), "x" * 500)

        call_args = backend.notify.call_args[1]
        assert call_args["title"] == "❌ Task Failed: Deploy"
        assert call_args["timeout"] == 0
        assert call_args["message"].endswith("x" * 200)
        assert "x" * 201 not in call_args["message"]

    @pytest.mark.anyio
    async def test_disabled_sends_nothing(self):
        """Test that notification is not sent when disabled."""
        notifier, backend = _enabled_notifier()
        notifier.enabled = False
        await notifier.notify_task_completed(Task(title="t"))
        backend.notify.assert_not_called()

    @pytest.mark.anyio
    async def test_backend_error_is_swallowed(self):
        """Test that a failing backend does not raise."""
        notifier, backend = _enabled_notifier()
        backend.notify.side_effect = RuntimeError("no display")
        await notifier.notify_task_completed(Task(title="t"))


class TestBuildNotifier:
    """Test build_notifier factory."""

    def test_disabled_returns_none(self):
        assert build_notifier(False) is None

    def test_enabled_returns_desktop_notifier(self):
        with patch.dict(sys.modules, {"plyer": None}):
            notifier = build_notifier(True)
        assert isinstance(notifier, DesktopNotifier)

    @pytest.mark.anyio
    async def test_null_notifier_is_noop(self):
        notifier = NullNotifier()
        await notifier.notify_task_completed(Task(title="t"))
        await notifier.notify_task_failed(Task(title="t"), "err")
