"""
Exception taxonomy for horizon.
"""

from __future__ import annotations


class HorizonError(Exception):
    """Base error for horizon."""


class ConfigError(HorizonError):
    """Config or task definition validation error."""


class InvalidCronExpression(HorizonError):
    """Cron expression could not be parsed by the general cron engine."""


class UnsupportedCronExpression(HorizonError):
    """Expression falls outside the fast-path grammar."""


class TaskExecutionError(HorizonError):
    """A task body reported failure."""
