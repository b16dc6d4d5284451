"""
Scheduler orchestration.

An external timer calls ``SchedulerManager.run`` once per minute. Each call
evaluates every registered task, starts the due ones concurrently and returns
without waiting for them. ``wait_idle`` waits for everything still in flight.
There is no cap on concurrent executions and no cancellation; a hung task
holds its lock until the TTL runs out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Coroutine, Dict, List, Optional, Sequence, Set, Union

from horizon import process
from horizon.cron import is_due
from horizon.errors import ConfigError, TaskExecutionError
from horizon.hooks import RUN_COMPLETE, RUN_START, TASK_FAILURE, TASK_START, TASK_SUCCESS, Hooks
from horizon.locks import LockManager, lock_key
from horizon.process import ProcessRunner
from horizon.schedule import Observer, TaskCallback, TaskDefinition, TaskSchedule
from horizon.utils import UTC, ensure_aware_utc, maybe_await

logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self,
        lock_manager: Optional[LockManager] = None,
        hooks: Optional[Hooks] = None,
        node_role: Optional[str] = None,
        process_runner: Optional[ProcessRunner] = None,
    ) -> None:
        self.lock_manager = lock_manager or LockManager("memory")
        self.hooks = hooks
        self.node_role = node_role
        self.process_runner: ProcessRunner = process_runner or process.run
        self._schedules: List[Union[TaskSchedule, TaskDefinition]] = []
        self._inflight: Set["asyncio.Task[Any]"] = set()

    # Registration

    def task(self, name: str, callback: TaskCallback) -> TaskSchedule:
        schedule = TaskSchedule(name, callback)
        self.add(schedule)
        return schedule

    def exec(self, name: str, command: str) -> TaskSchedule:
        """Register a shell command. A failing command counts as a failed task."""

        async def run_command() -> None:
            result = await self.process_runner(command)
            if result.exit_code != 0 or not result.success:
                detail = (result.stderr or result.stdout).strip()
                raise TaskExecutionError(f"Command failed: {detail}")

        schedule = TaskSchedule(name, run_command).set_command(command)
        self.add(schedule)
        return schedule

    def add(self, schedule: Union[TaskSchedule, TaskDefinition]) -> None:
        if any(existing.name == schedule.name for existing in self._schedules):
            raise ConfigError(f'Error: Duplicate task name "{schedule.name}".')
        self._schedules.append(schedule)

    def get_tasks(self) -> List[TaskDefinition]:
        return [
            item.definition() if isinstance(item, TaskSchedule) else item
            for item in self._schedules
        ]

    def get_task(self, name: str) -> Optional[TaskDefinition]:
        return next((task for task in self.get_tasks() if task.name == name), None)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    # Tick

    async def run(self, now: Optional[datetime] = None) -> List[TaskDefinition]:
        now = ensure_aware_utc(now or datetime.now(tz=UTC))
        await self._emit(RUN_START, {"date": now})

        due = [task for task in self.get_tasks() if is_due(task.expression, task.timezone, now)]
        if due:
            logger.info(
                "%s task(s) due at %s: %s",
                len(due),
                now.isoformat(),
                ", ".join(task.name for task in due),
            )
        for task in due:
            self._spawn(self.run_task(task, now), f"dispatch:{task.name}")

        await self._emit(RUN_COMPLETE, {"date": now, "due_count": len(due)})
        return due

    async def run_task(self, task: TaskDefinition, now: Optional[datetime] = None) -> None:
        if task.node_role is not None and task.node_role != self.node_role:
            return

        now = ensure_aware_utc(now or datetime.now(tz=UTC))
        key = lock_key(task.name, now)
        acquired = False
        if task.exclusive:
            acquired = await self.lock_manager.acquire(key, task.lock_ttl)
            if not acquired:
                logger.debug("Lock %s already held; skipping %s", key, task.name)
                return

        # A lock taken here expires via its TTL, even when the task fails.
        # It is only given back when the scheduler itself breaks before the
        # task could run.
        try:
            if task.background:
                self._spawn(self.execute_task(task), f"background:{task.name}")
            else:
                await self.execute_task(task)
        except Exception:
            if acquired:
                await self.lock_manager.release(key)
            raise

    async def execute_task(self, task: TaskDefinition) -> bool:
        """Run the task body and report the outcome. Never raises for task failures."""
        started = time.monotonic()
        await self._emit(TASK_START, {"name": task.name, "start_time": datetime.now(tz=UTC)})

        try:
            await maybe_await(task.callback())
        except Exception as exc:
            duration = time.monotonic() - started
            logger.error("Task %s failed after %.2fs", task.name, duration, exc_info=exc)
            await self._emit(TASK_FAILURE, {"name": task.name, "error": exc, "duration": duration})
            await self._notify_observers(task.name, "failure", task.on_failure, exc)
            return False

        duration = time.monotonic() - started
        await self._emit(TASK_SUCCESS, {"name": task.name, "duration": duration})
        await self._notify_observers(task.name, "success", task.on_success, task.name)
        return True

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # Internals

    def _spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro, name=label)
        self._inflight.add(task)
        task.add_done_callback(self._reap)
        return task

    def _reap(self, task: "asyncio.Task[Any]") -> None:
        self._inflight.discard(task)
        if task.cancelled():
            logger.warning("%s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unexpected error in %s", task.get_name(), exc_info=exc)

    async def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        if self.hooks is None:
            return
        try:
            await maybe_await(self.hooks.notify(event, payload))
        except Exception as exc:
            logger.warning("Hook %s failed: %s", event, str(exc))

    async def _notify_observers(
        self,
        name: str,
        outcome: str,
        observers: Sequence[Observer],
        argument: Any,
    ) -> None:
        for observer in observers:
            try:
                await maybe_await(observer(argument))
            except Exception as exc:
                logger.warning("%s observer for %s failed: %s", outcome.capitalize(), name, str(exc))
