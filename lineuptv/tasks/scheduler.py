"""
Interval scheduler for background maintenance tasks.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """A task run every `interval_seconds`."""

    name: str
    func: Callable
    interval_seconds: int
    kwargs: Dict[str, Any] = field(default_factory=dict)

    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_result: Any = None
    run_count: int = 0
    is_running: bool = False

    def calculate_next_run(self) -> datetime:
        base = self.last_run or datetime.now()
        return base + timedelta(seconds=self.interval_seconds)


class TaskScheduler:
    """
    Runs registered tasks on fixed intervals inside the app's event loop.

    Sync task functions run in a worker thread so a long buffer extension
    does not block request handling.
    """

    def __init__(self, tick_seconds: float = 1.0):
        self.tick_seconds = tick_seconds
        self._tasks: Dict[str, ScheduledTask] = {}
        self._running = False
        self._scheduler_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def add_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: int,
        run_immediately: bool = False,
        **kwargs,
    ) -> None:
        """
        Register a task.

        Args:
            name: Unique task name; re-adding replaces the old entry
            func: Sync or async callable
            interval_seconds: Run interval in seconds
            run_immediately: First run on the next tick instead of after one interval
            kwargs: Keyword arguments passed to `func`
        """
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            kwargs=kwargs,
        )
        if run_immediately:
            task.next_run = datetime.now()
        else:
            task.next_run = datetime.now() + timedelta(seconds=interval_seconds)

        self._tasks[name] = task
        logger.info(f"Scheduled task added: {name} (every {interval_seconds}s)")

    def remove_task(self, name: str) -> bool:
        if self._tasks.pop(name, None) is None:
            return False
        logger.info(f"Scheduled task removed: {name}")
        return True

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Task scheduler started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False

        if self._scheduler_task:
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
            self._scheduler_task = None

        logger.info("Task scheduler stopped")

    async def run_task(self, name: str) -> Any:
        """
        Run a registered task now.

        Returns:
            The task's result

        Raises:
            KeyError: If no task has that name
        """
        task = self._tasks[name]
        await self._execute_task(task)
        return task.last_result

    def get_tasks(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": t.name,
                "interval_seconds": t.interval_seconds,
                "last_run": t.last_run.isoformat() if t.last_run else None,
                "next_run": t.next_run.isoformat() if t.next_run else None,
                "run_count": t.run_count,
                "is_running": t.is_running,
            }
            for t in self._tasks.values()
        ]

    async def _scheduler_loop(self) -> None:
        while self._running:
            try:
                now = datetime.now()
                for task in list(self._tasks.values()):
                    if task.next_run and task.next_run <= now and not task.is_running:
                        asyncio.create_task(self._execute_task(task))
                await asyncio.sleep(self.tick_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
                await asyncio.sleep(5)

    async def _execute_task(self, task: ScheduledTask) -> None:
        task.is_running = True
        task.last_run = datetime.now()

        try:
            logger.debug(f"Running scheduled task: {task.name}")
            if asyncio.iscoroutinefunction(task.func):
                task.last_result = await task.func(**task.kwargs)
            else:
                task.last_result = await asyncio.to_thread(task.func, **task.kwargs)
            task.run_count += 1
            logger.debug(f"Scheduled task completed: {task.name}")
        except Exception as e:
            logger.error(f"Scheduled task failed: {task.name}: {e}")
        finally:
            task.is_running = False
            task.next_run = task.calculate_next_run()


# Global scheduler instance
scheduler = TaskScheduler()
