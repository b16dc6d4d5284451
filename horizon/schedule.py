"""
Task definitions and the fluent builder used to declare them.

    scheduler.task("backup", backup).daily().at("02:00").on_one_server()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from horizon.errors import ConfigError
from horizon.validation import (
    ensure_int,
    ensure_str,
    parse_hhmm,
    parse_timezone,
    validate_day_of_month,
    validate_weekday,
)

TaskCallback = Callable[[], Union[None, Awaitable[None]]]
Observer = Callable[[Any], Union[None, Awaitable[None]]]

DEFAULT_EXPRESSION = "* * * * *"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_LOCK_TTL_SECONDS = 300


@dataclass(frozen=True)
class TaskDefinition:
    name: str
    callback: TaskCallback
    expression: str = DEFAULT_EXPRESSION
    timezone: str = DEFAULT_TIMEZONE
    exclusive: bool = False
    lock_ttl: int = DEFAULT_LOCK_TTL_SECONDS
    background: bool = False
    node_role: Optional[str] = None
    command: Optional[str] = None
    description: Optional[str] = None
    on_success: Tuple[Observer, ...] = field(default_factory=tuple)
    on_failure: Tuple[Observer, ...] = field(default_factory=tuple)


class TaskSchedule:
    """Mutable builder for one TaskDefinition.

    Every setter returns the builder. ``definition()`` snapshots the current
    configuration into a frozen TaskDefinition.
    """

    def __init__(self, name: str, callback: TaskCallback) -> None:
        if not callable(callback):
            raise ConfigError(f'Error: callback for task "{name}" must be callable.')
        self.name = ensure_str(name, "task.name")
        self.callback = callback
        self.expression = DEFAULT_EXPRESSION
        self.timezone_name = DEFAULT_TIMEZONE
        self.exclusive = False
        self.lock_ttl = DEFAULT_LOCK_TTL_SECONDS
        self.background = False
        self.node_role: Optional[str] = None
        self.command: Optional[str] = None
        self.description: Optional[str] = None
        self.success_callbacks: List[Observer] = []
        self.failure_callbacks: List[Observer] = []

    def _path(self, attribute: str) -> str:
        return f"task[{self.name}].{attribute}"

    # Frequency

    def cron(self, expression: str) -> "TaskSchedule":
        self.expression = ensure_str(expression, self._path("cron"))
        return self

    def every_minute(self) -> "TaskSchedule":
        return self.cron("* * * * *")

    def every_five_minutes(self) -> "TaskSchedule":
        return self.cron("*/5 * * * *")

    def every_ten_minutes(self) -> "TaskSchedule":
        return self.cron("*/10 * * * *")

    def every_fifteen_minutes(self) -> "TaskSchedule":
        return self.cron("*/15 * * * *")

    def every_thirty_minutes(self) -> "TaskSchedule":
        return self.cron("0,30 * * * *")

    def hourly(self) -> "TaskSchedule":
        return self.cron("0 * * * *")

    def hourly_at(self, minute: int) -> "TaskSchedule":
        minute = ensure_int(minute, self._path("hourly_at"), 0, minimum=0, maximum=59)
        return self.cron(f"{minute} * * * *")

    def daily(self) -> "TaskSchedule":
        return self.cron("0 0 * * *")

    def daily_at(self, time_text: str) -> "TaskSchedule":
        hour, minute = parse_hhmm(time_text, self._path("daily_at"))
        return self.cron(f"{minute} {hour} * * *")

    def weekly(self) -> "TaskSchedule":
        return self.cron("0 0 * * 0")

    def weekly_on(self, day: int, time_text: str = "00:00") -> "TaskSchedule":
        day = validate_weekday(day, self._path("weekly_on.day"))
        hour, minute = parse_hhmm(time_text, self._path("weekly_on.time"))
        return self.cron(f"{minute} {hour} * * {day}")

    def monthly(self) -> "TaskSchedule":
        return self.cron("0 0 1 * *")

    def monthly_on(self, day: int, time_text: str = "00:00") -> "TaskSchedule":
        day = validate_day_of_month(day, self._path("monthly_on.day"))
        hour, minute = parse_hhmm(time_text, self._path("monthly_on.time"))
        return self.cron(f"{minute} {hour} {day} * *")

    # Constraints

    def timezone(self, name: str) -> "TaskSchedule":
        parse_timezone(name, self._path("timezone"))
        self.timezone_name = name
        return self

    def at(self, time_text: str) -> "TaskSchedule":
        """Rewrite the minute and hour fields of the current expression."""
        hour, minute = parse_hhmm(time_text, self._path("at"))
        parts = self.expression.split()
        if len(parts) != 5:
            raise ConfigError(
                f'Error: {self._path("at")} needs a 5-field expression, got "{self.expression}".'
            )
        parts[0] = str(minute)
        parts[1] = str(hour)
        self.expression = " ".join(parts)
        return self

    def on_one_server(self, lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS) -> "TaskSchedule":
        self.lock_ttl = ensure_int(
            lock_ttl_seconds,
            self._path("on_one_server"),
            DEFAULT_LOCK_TTL_SECONDS,
        )
        self.exclusive = True
        return self

    def without_overlapping(self, lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS) -> "TaskSchedule":
        return self.on_one_server(lock_ttl_seconds)

    def run_in_background(self) -> "TaskSchedule":
        self.background = True
        return self

    def on_node(self, role: str) -> "TaskSchedule":
        self.node_role = ensure_str(role, self._path("on_node"))
        return self

    def set_command(self, command: str) -> "TaskSchedule":
        self.command = command
        return self

    def describe(self, text: str) -> "TaskSchedule":
        self.description = text
        return self

    # Observers

    def on_success(self, callback: Observer) -> "TaskSchedule":
        self.success_callbacks.append(callback)
        return self

    def on_failure(self, callback: Observer) -> "TaskSchedule":
        self.failure_callbacks.append(callback)
        return self

    def definition(self) -> TaskDefinition:
        return TaskDefinition(
            name=self.name,
            callback=self.callback,
            expression=self.expression,
            timezone=self.timezone_name,
            exclusive=self.exclusive,
            lock_ttl=self.lock_ttl,
            background=self.background,
            node_role=self.node_role,
            command=self.command,
            description=self.description,
            on_success=tuple(self.success_callbacks),
            on_failure=tuple(self.failure_callbacks),
        )
