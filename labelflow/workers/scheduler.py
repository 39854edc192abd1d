# ---------------------------
# labelflow/workers/scheduler.py
# ---------------------------
"""
Named recurring background jobs.

Each task is either stopped (``active=False``) or active. Starting a task runs
it right away and, once the run ends (with or without an error), re-arms a
timer for the next run while the task is still active. ``running`` keeps two
runs of the same task from overlapping: an invocation that finds the task
already running does nothing, not even re-arming.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from labelflow.config import settings

logger = logging.getLogger("uvicorn.error")

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    name: str
    func: TaskFunc
    interval_seconds: float
    active: bool = False
    running: bool = False
    timer_handle: Optional[asyncio.TimerHandle] = None
    runs: int = 0
    last_error: Optional[str] = None


class JobScheduler:
    def __init__(self, default_interval_seconds: Optional[float] = None):
        self._default_interval = (
            settings.SCHEDULER_INTERVAL_SECONDS if default_interval_seconds is None else default_interval_seconds
        )
        self._tasks: Dict[str, ScheduledTask] = {}
        self._inflight: Set[asyncio.Task] = set()

    # ---------------------------
    # Registry
    # ---------------------------

    def register(self, name: str, func: TaskFunc, interval_seconds: Optional[float] = None) -> ScheduledTask:
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=self._default_interval if interval_seconds is None else interval_seconds,
        )
        self._tasks[name] = task
        return task

    def names(self):
        return list(self._tasks)

    def get(self, name: str) -> ScheduledTask:
        """Raises KeyError for an unknown task."""
        return self._tasks[name]

    def status(self) -> Dict[str, bool]:
        return {name: t.active for name, t in self._tasks.items()}

    def is_running(self, name: str) -> bool:
        return self.get(name).running

    # ---------------------------
    # Control
    # ---------------------------

    def start(self, name: str) -> bool:
        """Activate and run now. False (and nothing else) when already active."""
        task = self.get(name)
        if task.active:
            return False
        task.active = True
        logger.info("[SCHED] %s started (every %ss)", name, task.interval_seconds)
        self._spawn(task)
        return True

    def stop(self, name: str) -> bool:
        """Deactivate and drop the pending timer; a run in progress finishes."""
        task = self.get(name)
        if not task.active:
            return False
        task.active = False
        if task.timer_handle is not None:
            task.timer_handle.cancel()
            task.timer_handle = None
        logger.info("[SCHED] %s stopped", name)
        return True

    async def shutdown(self, timeout: float = 5.0) -> None:
        for name in list(self._tasks):
            self.stop(name)
        if not self._inflight:
            return
        pending = list(self._inflight)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for t in still_running:
            t.cancel()

    # ---------------------------
    # Internals
    # ---------------------------

    def _spawn(self, task: ScheduledTask) -> None:
        task.timer_handle = None
        runner = asyncio.get_running_loop().create_task(self._invoke(task))
        self._inflight.add(runner)
        runner.add_done_callback(self._inflight.discard)

    async def _invoke(self, task: ScheduledTask) -> None:
        if task.running:
            logger.info("[SCHED] %s already running; skipped", task.name)
            return
        task.running = True
        try:
            await task.func()
            task.last_error = None
        except Exception as e:
            task.last_error = str(e)
            logger.exception("[SCHED] error in %s: %s", task.name, e)
        finally:
            task.running = False
            task.runs += 1
            if task.active:
                task.timer_handle = asyncio.get_running_loop().call_later(
                    task.interval_seconds, self._spawn, task
                )
