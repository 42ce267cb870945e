"""Periodic scheduling loop feeding eligible tasks to the dispatcher.

Each tick walks the store's eligible tasks in queue order and dispatches them
one at a time until the in-flight count reaches ``max_concurrent_tasks``.
The timer spawns a tick every ``tick_interval_seconds`` even while earlier
ticks are still waiting on agents; the compare-and-set claim in the
dispatcher keeps overlapping ticks from running a task twice.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..agents.interfaces import AgentDirectory
from ..config import OrchestratorSettings
from ..constants import DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
from ..errors import OrchestratorError
from ..events.bus import Event, EventBus, EventType
from ..task_engine.store import TaskStore
from .dispatch import Dispatcher

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        store: TaskStore,
        dispatcher: Dispatcher,
        directory: AgentDirectory,
        settings: OrchestratorSettings,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.directory = directory
        self.settings = settings
        self.bus = bus
        self._timer: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()
        self._subscribed = False

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def tick(self) -> list[str]:
        """Run one scheduling pass; return the ids dispatched during it."""
        if not await self.directory.available_agents():
            return []
        ceiling = self.settings.max_concurrent_tasks
        if self.dispatcher.in_flight_count >= ceiling:
            return []

        dispatched: list[str] = []
        for task in self.store.eligible_tasks():
            if self.dispatcher.in_flight_count >= ceiling:
                break
            try:
                await self.dispatcher.dispatch(task.id)
            except OrchestratorError as exc:
                logger.warning("Dispatch of task %s failed: %s", task.id, exc)
                continue
            except Exception:
                logger.exception("Dispatch failed for task %s", task.id)
                continue
            dispatched.append(task.id)
        return dispatched

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic timer on the running event loop."""
        if self.running:
            return
        if self.settings.wake_on_completion and self.bus is not None and not self._subscribed:
            self.bus.subscribe(self._on_completed, EventType.TASK_COMPLETED)
            self._subscribed = True
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(), name="scheduler-timer")
        logger.info(
            "Scheduler started (interval=%.1fs, max_concurrent_tasks=%d)",
            self.settings.tick_interval_seconds,
            self.settings.max_concurrent_tasks,
        )

    async def stop(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Cancel the timer and wait up to *timeout* seconds for running ticks."""
        if self._subscribed and self.bus is not None:
            self.bus.unsubscribe(self._on_completed, EventType.TASK_COMPLETED)
            self._subscribed = False
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        pending = list(self._ticks)
        if pending and timeout > 0:
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            if still_running:
                logger.warning("%d scheduler tick(s) still running after %.1fs", len(still_running), timeout)
        logger.info("Scheduler stopped")

    def wake(self) -> None:
        """Spawn an extra tick now.  No-op when the scheduler is stopped."""
        if self.running:
            self._spawn_tick()

    async def _run_timer(self) -> None:
        while True:
            self._spawn_tick()
            await asyncio.sleep(self.settings.tick_interval_seconds)

    def _spawn_tick(self) -> None:
        task = asyncio.get_running_loop().create_task(self._guarded_tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _guarded_tick(self) -> None:
        try:
            await self.tick()
        except Exception:
            logger.exception("Scheduler tick failed")

    def _on_completed(self, event: Event) -> None:
        try:
            self.wake()
        except RuntimeError:
            # emitted outside the event loop thread
            logger.debug("Skipping wake for %s: no running loop", event.entity_id)
