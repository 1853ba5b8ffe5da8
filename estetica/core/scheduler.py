"""In-process periodic task scheduler."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

TaskFunc = Callable[[datetime], Awaitable[Any]]


@dataclass
class PeriodicTask:
    """A named task run at a fixed cadence."""

    name: str
    interval: timedelta
    func: TaskFunc
    last_run_at: datetime | None = None
    last_error: str | None = None
    run_count: int = 0

    def is_due(self, now: datetime) -> bool:
        """Check whether the cadence elapsed since the last run."""
        return self.last_run_at is None or now - self.last_run_at >= self.interval


class PeriodicScheduler:
    """
    Runs registered tasks when their cadence elapses.

    ``run_pending`` is the unit that does the work and can be called directly
    (tests, one-off runs); ``start`` drives it from an asyncio ticker task.
    Tasks must be idempotent: a restart runs every task once immediately.
    """

    def __init__(
        self,
        tick_seconds: float = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        """
        Initialize scheduler.

        Args:
            tick_seconds: Seconds between checks for due tasks
            clock: Source of the current time
        """
        self.tick_seconds = tick_seconds
        self.clock = clock
        self._tasks: dict[str, PeriodicTask] = {}
        self._runner: asyncio.Task | None = None

    def register(self, name: str, interval: timedelta, func: TaskFunc) -> PeriodicTask:
        """
        Register a task.

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._tasks:
            raise ValueError(f"Task {name} is already registered")
        if interval <= timedelta(0):
            raise ValueError("Task interval must be positive")

        task = PeriodicTask(name=name, interval=interval, func=func)
        self._tasks[name] = task
        return task

    @property
    def tasks(self) -> list[PeriodicTask]:
        """Registered tasks in registration order."""
        return list(self._tasks.values())

    @property
    def running(self) -> bool:
        """Check whether the ticker is active."""
        return self._runner is not None and not self._runner.done()

    async def run_task(self, name: str, now: datetime | None = None) -> Any:
        """
        Run one task now, recording the outcome.

        A failing task is logged and its error kept in ``last_error``; the
        exception does not propagate.
        """
        task = self._tasks[name]
        now = now or self.clock()
        task.last_run_at = now
        task.run_count += 1

        try:
            result = await task.func(now)
        except Exception as e:
            task.last_error = str(e)
            logger.error("periodic_task_failed", task=name, error=str(e))
            return None

        task.last_error = None
        logger.info("periodic_task_completed", task=name, result=result)
        return result

    async def run_pending(self, now: datetime | None = None) -> list[str]:
        """
        Run every task that is due.

        Returns:
            Names of the tasks that ran
        """
        now = now or self.clock()
        ran = []
        for task in self.tasks:
            if task.is_due(now):
                await self.run_task(task.name, now)
                ran.append(task.name)
        return ran

    def start(self) -> None:
        """Start the ticker on the running event loop."""
        if self.running:
            logger.warning("scheduler_already_running")
            return
        self._runner = asyncio.create_task(self._loop(), name="periodic-scheduler")
        logger.info("scheduler_started", tasks=len(self._tasks), tick_seconds=self.tick_seconds)

    async def stop(self) -> None:
        """Stop the ticker and wait for it to exit."""
        if self._runner is None:
            return
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._runner = None
        logger.info("scheduler_stopped")

    async def _loop(self) -> None:
        while True:
            await self.run_pending()
            await asyncio.sleep(self.tick_seconds)

    def status(self) -> list[dict[str, Any]]:
        """Describe each task's cadence and last outcome."""
        return [
            {
                "name": task.name,
                "interval_seconds": int(task.interval.total_seconds()),
                "last_run_at": task.last_run_at,
                "last_error": task.last_error,
                "run_count": task.run_count,
            }
            for task in self.tasks
        ]
