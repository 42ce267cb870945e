"""Task outcome notifications.

The dispatcher talks to a :class:`Notifier`.  :class:`NullNotifier` is the
default; :class:`DesktopNotifier` shows desktop notifications through plyer.
"""

from __future__ import annotations

from typing import Optional, Protocol

from loguru import logger

from ..constants import NOTIFICATION_BODY_MAX_CHARS
from ..task_engine.model import Task


class Notifier(Protocol):
    async def notify_task_completed(self, task: Task) -> None: ...

    async def notify_task_failed(self, task: Task, error: str) -> None: ...


class NullNotifier:
    async def notify_task_completed(self, task: Task) -> None:
        return None

    async def notify_task_failed(self, task: Task, error: str) -> None:
        return None


class DesktopNotifier:
    """Desktop notifications for finished tasks."""

    def __init__(self, enabled: bool = True, app_name: str = "Task Orchestrator"):
        """Initialize the notifier.

        Args:
            enabled: Whether notifications are enabled.
            app_name: Application name shown by the desktop environment.
        """
        self.enabled = enabled
        self.app_name = app_name
        self._notifier = None

        if enabled:
            self._initialize_notifier()

    def _initialize_notifier(self) -> None:
        """Initialize the notification backend."""
        try:
            from plyer import notification

            self._notifier = notification
            logger.debug("Desktop notifications initialized")
        except ImportError:
            logger.warning(
                "plyer not installed - desktop notifications disabled. "
                "Install with: pip install 'task-orchestrator[notify]'"
            )
            self.enabled = False

    async def notify_task_completed(self, task: Task) -> None:
        """Send notification that a task completed.

        Args:
            task: The completed task.
        """
        if not self.enabled or not self._notifier:
            return

        body = f"Task: {task.id}"
        if task.assigned_agent:
            body += f"\nAgent: {task.assigned_agent}"
        self._send_notification(f"✅ Task Complete: {task.title}", body)

    async def notify_task_failed(self, task: Task, error: str) -> None:
        """Send notification that a task failed.

        Args:
            task: The failed task.
            error: Failure message reported by the agent.
        """
        if not self.enabled or not self._notifier:
            return

        body = f"Task: {task.id}\n{(error or 'unknown error')[:NOTIFICATION_BODY_MAX_CHARS]}"
        self._send_notification(f"❌ Task Failed: {task.title}", body, timeout=0)

    def _send_notification(self, title: str, message: str, timeout: int = 10) -> None:
        """Send desktop notification.

        Args:
            title: Notification title.
            message: Notification message.
            timeout: Timeout in seconds (0 = no timeout).
        """
        if not self._notifier:
            return

        try:
            self._notifier.notify(
                title=title,
                message=message,
                app_name=self.app_name,
                timeout=timeout,
            )
            logger.debug("Notification sent: {}", title)
        except Exception as e:
            logger.warning("Failed to send notification: {}", e)


def build_notifier(desktop: bool) -> Optional[Notifier]:
    """Return a desktop notifier when enabled, else None (the dispatcher's no-op default)."""
    return DesktopNotifier(enabled=True) if desktop else None
