"""In-memory task scheduler — delayed conditional callbacks.

A task becomes due `delay` seconds after creation. run_due() evaluates the
check function of every due task and runs execute() when it passes.
Tasks whose check fails stay pending and are re-evaluated on the next
run; tasks whose execute() raises are logged and also stay pending.
Executed and cancelled tasks are dropped. Cancellation is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List
from uuid import uuid4

from patronage.substrate.clock import ManualClock

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    task_id: str
    due_at: int
    check: Callable[[], bool]
    execute: Callable[[], None]
    cancelled: bool = False


class InMemoryTaskScheduler:
    """Scheduler driven by a ManualClock.

    Usage:
        scheduler = InMemoryTaskScheduler(clock)
        task_id = scheduler.create_task(check, execute, delay=3600)
        clock.advance(3600)
        scheduler.run_due()
    """

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._tasks: Dict[str, ScheduledTask] = {}

    def create_task(
        self,
        check: Callable[[], bool],
        execute: Callable[[], None],
        delay: int,
    ) -> str:
        if delay < 0:
            raise ValueError(f"Task delay must be non-negative, got {delay}")
        task_id = f"task_{uuid4().hex[:12]}"
        self._tasks[task_id] = ScheduledTask(
            task_id=task_id,
            due_at=self._clock.now() + delay,
            check=check,
            execute=execute,
        )
        return task_id

    def cancel_task(self, task_id: str) -> None:
        task = self._tasks.pop(task_id, None)
        if task is not None:
            # A run in progress may still hold a reference.
            task.cancelled = True

    def get_task(self, task_id: str) -> ScheduledTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise ValueError(f"Unknown task ID: {task_id}")
        return task

    def pending(self) -> List[ScheduledTask]:
        return list(self._tasks.values())

    def run_due(self) -> List[str]:
        """Execute every due task whose check passes. Returns executed ids."""
        now = self._clock.now()
        executed: List[str] = []
        for task in sorted(self.pending(), key=lambda t: (t.due_at, t.task_id)):
            if task.due_at > now or task.cancelled:
                continue
            if not task.check():
                continue
            try:
                task.execute()
            except Exception as exc:
                logger.warning("Scheduled task %s failed: %s", task.task_id, exc)
                continue
            self._tasks.pop(task.task_id, None)
            executed.append(task.task_id)
        return executed
