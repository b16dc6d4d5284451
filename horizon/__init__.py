"""
horizon: cron-driven task scheduling with pluggable distributed locks.
"""

from __future__ import annotations

from horizon.cron import is_due, next_date, next_dates
from horizon.errors import (
    ConfigError,
    HorizonError,
    InvalidCronExpression,
    TaskExecutionError,
    UnsupportedCronExpression,
)
from horizon.hooks import Hooks, LogHooks
from horizon.locks import CacheLockStore, LockManager, LockStore, MemoryLockStore, lock_key
from horizon.manager import SchedulerManager
from horizon.process import ProcessResult
from horizon.schedule import TaskDefinition, TaskSchedule

__all__ = [
    "CacheLockStore",
    "ConfigError",
    "Hooks",
    "HorizonError",
    "InvalidCronExpression",
    "LockManager",
    "LockStore",
    "LogHooks",
    "MemoryLockStore",
    "ProcessResult",
    "SchedulerManager",
    "TaskDefinition",
    "TaskExecutionError",
    "TaskSchedule",
    "UnsupportedCronExpression",
    "is_due",
    "lock_key",
    "next_date",
    "next_dates",
]
