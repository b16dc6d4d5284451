"""
Hook bus contract and a logging implementation of it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)

RUN_START = "scheduler:run:start"
RUN_COMPLETE = "scheduler:run:complete"
TASK_START = "scheduler:task:start"
TASK_SUCCESS = "scheduler:task:success"
TASK_FAILURE = "scheduler:task:failure"


class Hooks(Protocol):
    """Observer injected into SchedulerManager. ``notify`` may be a coroutine function."""

    def notify(self, event: str, payload: Dict[str, Any]) -> Any: ...


class LogHooks:
    """Logs scheduler events and remembers which tasks failed."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger
        self.failed: Set[str] = set()
        self.succeeded: Set[str] = set()

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        if event == RUN_START:
            self.log.info("Tick started for %s", payload["date"].isoformat())
        elif event == RUN_COMPLETE:
            self.log.info("Tick dispatched %s due task(s)", payload["due_count"])
        elif event == TASK_START:
            self.log.info("Task %s started", payload["name"])
        elif event == TASK_SUCCESS:
            self.succeeded.add(payload["name"])
            self.log.info("Task %s succeeded in %.2fs", payload["name"], payload["duration"])
        elif event == TASK_FAILURE:
            self.failed.add(payload["name"])
            self.log.error(
                "Task %s failed after %.2fs: %s",
                payload["name"],
                payload["duration"],
                payload["error"],
            )
        else:
            self.log.debug("Unhandled hook event %s", event)
