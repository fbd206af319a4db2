"""
Fire-and-forget side calls.

Tasks spawned here never feed back into the flow that started them. A failed
task is logged from its done-callback; nothing awaits it on the main path.
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set


class BackgroundTasks:
    """Tracks in-flight side tasks so they are not garbage collected mid-run."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._inflight: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._inflight.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("Background task %s failed: %s", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding tasks. Used on shutdown and in tests."""
        if not self._inflight:
            return
        await asyncio.wait(list(self._inflight), timeout=timeout)

    def cancel_all(self) -> None:
        for task in list(self._inflight):
            task.cancel()
