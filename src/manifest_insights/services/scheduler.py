"""
Periodic Task Scheduler
One logical clock driving the health snapshot and the analysis passes.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.schemas import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    name: str
    period: Optional[float]
    func: Callable[[], Any]
    next_run: Optional[datetime]
    runs: int = 0
    failures: int = 0
    last_run: Optional[datetime] = None


class Scheduler:
    """
    Runs named tasks on fixed periods.

    A task that is still in flight is skipped rather than started again, so a
    slow pass never overlaps itself. Task exceptions are logged and the loop
    keeps going.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now, tick: float = 1.0):
        self._clock = clock
        self.tick = tick
        self._tasks: Dict[str, ScheduledTask] = {}
        self._in_flight: Set[str] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False

    def add_task(
        self,
        name: str,
        period: Optional[float],
        func: Callable[[], Any],
        initial_delay: Optional[float] = None,
    ) -> ScheduledTask:
        """
        Register a task. First run is one period from now unless `initial_delay` is given.

        A period of 0 registers a one-shot task: it runs once and is removed.
        A period of None registers a manual task that only runs via `trigger`.
        """
        delay = period if initial_delay is None else initial_delay
        task = ScheduledTask(
            name=name,
            period=period,
            func=func,
            next_run=self._clock() + timedelta(seconds=delay) if delay is not None else None,
        )
        self._tasks[name] = task
        if task.next_run is None:
            logger.debug(f"Registered manual task {name}")
        else:
            logger.debug(f"Scheduled task {name} every {period}s (first run in {delay}s)")
        return task

    def remove_task(self, name: str) -> None:
        self._tasks.pop(name, None)

    @property
    def tasks(self) -> List[ScheduledTask]:
        return list(self._tasks.values())

    def is_running(self, name: str) -> bool:
        """True while the named task is executing."""
        return name in self._in_flight

    async def _execute(self, task: ScheduledTask) -> bool:
        if task.name in self._in_flight:
            logger.debug(f"Task {task.name} still running, skipping")
            return False

        self._in_flight.add(task.name)
        start = time.perf_counter()
        try:
            result = task.func()
            if inspect.isawaitable(result):
                await result
            task.runs += 1
        except Exception as e:
            task.failures += 1
            logger.error(f"Scheduled task {task.name} failed: {e}", exc_info=True)
        finally:
            self._in_flight.discard(task.name)
            task.last_run = self._clock()

        logger.debug(f"Task {task.name} finished in {(time.perf_counter() - start) * 1000:.2f}ms")
        return True

    async def run_due(self) -> List[str]:
        """
        Run every task whose next run time has passed.

        Returns:
            Names of the tasks that actually ran
        """
        now = self._clock()
        due = [t for t in self._tasks.values() if t.next_run is not None and t.next_run <= now]
        ran = []

        for task in due:
            if task.period:
                task.next_run = now + timedelta(seconds=task.period)
            else:
                self._tasks.pop(task.name, None)
            if await self._execute(task):
                ran.append(task.name)
        return ran

    async def trigger(self, name: str) -> bool:
        """
        Run a task now, outside its schedule.

        Returns:
            False if the task was already in flight and was skipped

        Raises:
            KeyError: unknown task name
        """
        return await self._execute(self._tasks[name])

    async def _loop(self):
        while self._running:
            try:
                await self.run_due()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.tick)

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Scheduler started with {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Stop the loop and wait for it to unwind."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Scheduler stopped")
