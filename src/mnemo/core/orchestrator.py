"""Orchestrator - drives periodic background jobs such as consolidation."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from mnemo.core.logging import get_logger

logger = get_logger("core.orchestrator")


class TaskPriority(Enum):
    LOW = 1
    NORMAL = 2
    HIGH = 3


@dataclass
class ScheduledTask:
    """A job the orchestrator runs once or on an interval."""

    id: str
    name: str
    callback: Callable
    interval: timedelta | None = None  # None = one-shot
    priority: TaskPriority = TaskPriority.NORMAL
    next_run: datetime = field(default_factory=datetime.now)
    last_run: datetime | None = None
    last_error: str | None = None
    enabled: bool = True
    running: bool = False
    runs: int = 0

    def is_due(self, now: datetime) -> bool:
        return self.enabled and not self.running and self.next_run <= now


class Orchestrator:
    """Polls scheduled jobs and runs the due ones, highest priority first.

    stop() fires the registered stop hooks before tearing down the loop, so
    long-running jobs can observe cancellation and return early.
    """

    def __init__(
        self,
        tick_seconds: float = 1.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._tasks: dict[str, ScheduledTask] = {}
        self._stop_hooks: list[Callable[[], None]] = []
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tick = tick_seconds
        self._clock = clock

    @property
    def running(self) -> bool:
        return self._running

    def schedule_task(
        self,
        task_id: str,
        name: str,
        callback: Callable,
        interval: timedelta | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        delay: timedelta | None = None,
    ) -> ScheduledTask:
        """Register a job, replacing any job with the same id."""
        task = ScheduledTask(
            id=task_id,
            name=name,
            callback=callback,
            interval=interval,
            priority=priority,
            next_run=self._clock() + (delay or timedelta()),
        )
        self._tasks[task_id] = task
        logger.info(f"Scheduled {name} (every {interval})" if interval else f"Scheduled {name}")
        return task

    def cancel_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def on_stop(self, hook: Callable[[], None]) -> None:
        """Register a signal fired before the loop is torn down."""
        self._stop_hooks.append(hook)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._scheduler_loop(), name="orchestrator")
        logger.info("Orchestrator started")

    async def stop(self) -> None:
        """Signal running jobs, then cancel the polling loop."""
        self._running = False
        for hook in self._stop_hooks:
            hook()
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("Orchestrator stopped")

    async def run_pending(self) -> int:
        """Run every due job once. Returns the number of jobs run."""
        now = self._clock()
        due = sorted(
            (t for t in self._tasks.values() if t.is_due(now)),
            key=lambda t: t.priority.value,
            reverse=True,
        )
        for task in due:
            await self._run(task)
        return len(due)

    async def _run(self, task: ScheduledTask) -> None:
        task.running = True
        try:
            result = task.callback()
            if asyncio.iscoroutine(result):
                await result
            task.last_error = None
        except Exception as e:
            task.last_error = str(e)
            logger.error(f"Task {task.name} failed: {e}", exc_info=True)
        finally:
            task.running = False
            task.runs += 1
            task.last_run = self._clock()
            if task.interval:
                task.next_run = task.last_run + task.interval
            else:
                self._tasks.pop(task.id, None)

    async def _scheduler_loop(self) -> None:
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self._tick)
