"""
Periodic background tasks with supervised restart.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from refledger.core.exceptions import ReferralLedgerError, SchedulerError

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """
    Runs func after an initial delay and then every interval.

    Expected failures (ReferralLedgerError, e.g. a store outage) are logged
    and the next tick proceeds as usual. Anything else breaks the loop; the
    supervisor logs it and starts the loop again after the cooldown.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0,
        restart_cooldown_seconds: float = 300,
        enabled: bool = True,
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.restart_cooldown_seconds = restart_cooldown_seconds
        self.enabled = enabled

        self.running = False
        self.last_run: Optional[datetime] = None
        self.run_count = 0
        self.error_count = 0
        self.restart_count = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self.logger = logger.bind(task=name)

    async def run_once(self) -> None:
        """Execute the task once."""
        start_time = datetime.utcnow()
        try:
            await self.func()
        except ReferralLedgerError as e:
            self.error_count += 1
            self.last_error = str(e)
            self.logger.error(
                "Task failed",
                error=str(e),
                error_code=e.code,
                error_count=self.error_count
            )
            return
        finally:
            self.last_run = start_time

        self.run_count += 1
        self.logger.debug(
            "Task completed",
            duration=(datetime.utcnow() - start_time).total_seconds(),
            run_count=self.run_count
        )

    async def _loop(self) -> None:
        if self.initial_delay_seconds:
            await asyncio.sleep(self.initial_delay_seconds)
        while self.running:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    async def supervise(self) -> None:
        """Keep the loop alive until stop()."""
        while self.running:
            try:
                await self._loop()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.restart_count += 1
                self.error_count += 1
                self.last_error = str(e)
                self.logger.exception(
                    "Task crashed, restarting after cooldown",
                    error_type=type(e).__name__,
                    cooldown=self.restart_cooldown_seconds,
                    restart_count=self.restart_count
                )
                await asyncio.sleep(self.restart_cooldown_seconds)

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self.running = True
        self._task = asyncio.create_task(self.supervise(), name=f"periodic:{self.name}")
        self.logger.info(
            "Task started",
            interval=self.interval_seconds,
            initial_delay=self.initial_delay_seconds
        )
        return self._task

    async def stop(self) -> None:
        self.running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        self.logger.info("Task stopped")

    def health_check(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "restart_count": self.restart_count,
            "last_error": self.last_error,
        }


class TaskScheduler:
    """Manages a set of independent periodic tasks."""

    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0,
        restart_cooldown_seconds: float = 300,
        enabled: bool = True,
    ) -> PeriodicTask:
        if name in self.tasks:
            raise SchedulerError(f"Task already registered: {name}", {"task": name})
        if interval_seconds <= 0:
            raise SchedulerError(
                f"Task interval must be positive: {name}",
                {"task": name, "interval": interval_seconds}
            )

        task = PeriodicTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            initial_delay_seconds=initial_delay_seconds,
            restart_cooldown_seconds=restart_cooldown_seconds,
            enabled=enabled,
        )
        self.tasks[name] = task
        logger.info(f"Registered task: {name} (interval: {interval_seconds}s)")
        return task

    def start(self) -> None:
        for task in self.tasks.values():
            if task.enabled:
                task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self.tasks.values()))

    def health_check(self) -> Dict[str, Any]:
        statuses = {name: task.health_check() for name, task in self.tasks.items()}
        return {
            "healthy": all(
                status["running"] for status in statuses.values() if status["enabled"]
            ),
            "tasks": statuses,
        }
