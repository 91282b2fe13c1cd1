"""Background task tracking for fire-and-forget work.

Durable view increments, watch-history writes and similar best-effort work
run as tracked tasks so the request that triggered them can return
immediately, and so shutdown can drain or cancel them.
"""

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Track background tasks with error logging.

    Failures are logged and swallowed: nothing awaits these tasks on the
    request path, so an exception here must never reach a caller.

    Usage:
        tasks = TaskManager()
        tasks.create_task(do_work(), name="durable_view:dramabox:42")

        # On shutdown
        await tasks.drain(timeout=5.0)
        await tasks.cancel_all()
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._failed = 0

    def create_task(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """Schedule a coroutine as a tracked background task."""

        async def wrapped_coro():
            task_name = name or "unnamed"
            try:
                return await coro
            except asyncio.CancelledError:
                logger.info(f"Background task cancelled: {task_name}")
                raise
            except Exception as e:
                self._failed += 1
                logger.error(f"Background task failed: {task_name} - {type(e).__name__}: {e}")
                return None

        task = asyncio.create_task(wrapped_coro(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def get_running_tasks(self) -> list[asyncio.Task]:
        """Get all currently running (non-done) tasks."""
        return [t for t in self._tasks if not t.done()]

    def get_task_stats(self) -> dict:
        return {
            "running": len(self.get_running_tasks()),
            "failed": self._failed,
        }

    async def drain(self, timeout: float | None = None) -> int:
        """
        Wait for running tasks to finish, including tasks they spawn.

        Returns how many were still pending when the timeout ran out.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            running = self.get_running_tasks()
            if not running:
                return 0
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, pending = await asyncio.wait(running, timeout=remaining)
            if pending:
                return len(pending)

    async def cancel_all(self, timeout: float = 5.0) -> dict:
        """
        Cancel all tracked tasks and wait for them to finish.

        Returns:
            Statistics about cancelled tasks
        """
        running = self.get_running_tasks()
        if not running:
            return {"cancelled": 0, "timed_out": 0}

        logger.info(f"Cancelling {len(running)} background tasks...")
        for task in running:
            task.cancel()

        done, pending = await asyncio.wait(running, timeout=timeout)

        if pending:
            logger.warning(f"{len(pending)} tasks did not finish within {timeout}s timeout")

        return {"cancelled": len(done), "timed_out": len(pending)}
