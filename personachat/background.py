import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Fire-and-forget work (summaries, titles) that must not block a turn.

    Tasks are referenced until they finish so the loop cannot drop them, and
    any exception is logged here instead of vanishing with the task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str = "") -> asyncio.Task:
        task = asyncio.create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Background task %s failed: %s", task.get_name(), exc, exc_info=exc
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding tasks, including ones spawned while waiting."""
        while self._tasks:
            pending = list(self._tasks)
            try:
                await asyncio.wait_for(
                    asyncio.gather(*pending, return_exceptions=True), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for %d background tasks, cancelling", len(pending))
                await self.cancel_all()
                return

    async def cancel_all(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            if not task.done():
                task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
