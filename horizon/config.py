"""
YAML configuration for the scheduler and the shell tasks it runs.

    version: 1
    scheduler:
      lock: {driver: memory}
      expose_as: scheduler
      node_role: worker
    defaults:
      timezone: UTC
    tasks:
      - name: nightly-report
        command: python report.py
        frequency: daily
        at: "02:00"
        on_one_server: 120
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, MutableMapping, Optional, Set, Tuple

import yaml

from horizon.errors import ConfigError
from horizon.hooks import Hooks
from horizon.locks import DEFAULT_LOCK_PREFIX, LOCK_DRIVERS, LockManager, SharedCache
from horizon.manager import SchedulerManager
from horizon.schedule import DEFAULT_LOCK_TTL_SECONDS, DEFAULT_TIMEZONE, TaskSchedule
from horizon.validation import ensure_bool, ensure_int, ensure_str, parse_hhmm, parse_timezone

DEFAULT_CONFIG = "horizon.yaml"
DEFAULT_EXPOSE_AS = "scheduler"

# builder methods that take no arguments
FREQUENCIES = {
    "every_minute",
    "every_five_minutes",
    "every_ten_minutes",
    "every_fifteen_minutes",
    "every_thirty_minutes",
    "hourly",
    "daily",
    "weekly",
    "monthly",
}
TASK_KEYS = {
    "name",
    "command",
    "cron",
    "frequency",
    "at",
    "timezone",
    "on_one_server",
    "background",
    "node",
    "description",
}


@dataclass(frozen=True)
class SchedulerSettings:
    lock_driver: str = "memory"
    lock_prefix: str = DEFAULT_LOCK_PREFIX
    expose_as: str = DEFAULT_EXPOSE_AS
    node_role: Optional[str] = None


@dataclass(frozen=True)
class TaskSpec:
    name: str
    command: str
    cron: Optional[str]
    frequency: Optional[str]
    at: Optional[str]
    timezone: str
    exclusive: bool
    lock_ttl: int
    background: bool
    node_role: Optional[str]
    description: Optional[str]


@dataclass(frozen=True)
class HorizonConfig:
    scheduler: SchedulerSettings
    tasks: List[TaskSpec]


def _load_config_payload(config_path: Path) -> Dict[str, Any]:
    if not config_path.exists():
        raise ConfigError(f"Error: Config file not found: {config_path}")

    try:
        payload = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Error: Failed to parse YAML in {config_path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError("Error: Top-level config must be a mapping.")
    return payload


def parse_config(config_path: Path) -> HorizonConfig:
    payload = _load_config_payload(config_path)

    unknown_top = set(payload.keys()) - {"version", "scheduler", "defaults", "tasks"}
    if unknown_top:
        raise ConfigError(f"Error: Unknown top-level keys: {sorted(unknown_top)}.")

    defaults = payload.get("defaults", {}) or {}
    if not isinstance(defaults, dict):
        raise ConfigError("Error: defaults must be a mapping.")
    unknown_defaults = set(defaults.keys()) - {"timezone"}
    if unknown_defaults:
        raise ConfigError(f"Error: Unknown keys in defaults: {sorted(unknown_defaults)}.")
    default_timezone = defaults.get("timezone", DEFAULT_TIMEZONE)
    parse_timezone(default_timezone, "defaults.timezone")

    scheduler = parse_scheduler_settings(payload.get("scheduler"))

    tasks_raw = payload.get("tasks", []) or []
    if not isinstance(tasks_raw, list):
        raise ConfigError("Error: tasks must be a list.")

    seen_names: Set[str] = set()
    tasks: List[TaskSpec] = []
    for idx, task_raw in enumerate(tasks_raw):
        spec = parse_task(task_raw, f"tasks[{idx}]", default_timezone)
        if spec.name in seen_names:
            raise ConfigError(f'Error: Duplicate task name "{spec.name}".')
        seen_names.add(spec.name)
        tasks.append(spec)

    return HorizonConfig(scheduler=scheduler, tasks=tasks)


def parse_scheduler_settings(raw: Any, field_path: str = "scheduler") -> SchedulerSettings:
    if raw is None:
        return SchedulerSettings()
    if not isinstance(raw, dict):
        raise ConfigError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - {"lock", "expose_as", "node_role"}
    if unknown:
        raise ConfigError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")

    lock_raw = raw.get("lock", {}) or {}
    if not isinstance(lock_raw, dict):
        raise ConfigError(f"Error: {field_path}.lock must be a mapping.")
    lock_unknown = set(lock_raw.keys()) - {"driver", "prefix"}
    if lock_unknown:
        raise ConfigError(f"Error: Unknown keys in {field_path}.lock: {sorted(lock_unknown)}.")
    driver = ensure_str(lock_raw.get("driver", "memory"), f"{field_path}.lock.driver").lower()
    if driver not in LOCK_DRIVERS:
        raise ConfigError(
            f'Error: {field_path}.lock.driver must be one of {sorted(LOCK_DRIVERS)}, got "{driver}".'
        )
    prefix = lock_raw.get("prefix", DEFAULT_LOCK_PREFIX)
    if not isinstance(prefix, str):
        raise ConfigError(f"Error: {field_path}.lock.prefix must be a string.")

    expose_as = ensure_str(raw.get("expose_as", DEFAULT_EXPOSE_AS), f"{field_path}.expose_as")
    node_role_raw = raw.get("node_role")
    node_role = None if node_role_raw is None else ensure_str(node_role_raw, f"{field_path}.node_role")

    return SchedulerSettings(
        lock_driver=driver,
        lock_prefix=prefix,
        expose_as=expose_as,
        node_role=node_role,
    )


def parse_task(raw: Any, field_path: str, default_timezone: str) -> TaskSpec:
    if not isinstance(raw, dict):
        raise ConfigError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - TASK_KEYS
    if unknown:
        raise ConfigError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")

    name = ensure_str(raw.get("name"), f"{field_path}.name")
    command = ensure_str(raw.get("command"), f"{field_path}.command")

    cron = raw.get("cron")
    frequency = raw.get("frequency")
    if cron is not None and frequency is not None:
        raise ConfigError(f'Error: {field_path} accepts either "cron" or "frequency", not both.')
    if cron is not None:
        cron = ensure_str(cron, f"{field_path}.cron")
    if frequency is not None:
        frequency = ensure_str(frequency, f"{field_path}.frequency").lower()
        if frequency not in FREQUENCIES:
            raise ConfigError(
                f'Error: {field_path}.frequency must be one of {sorted(FREQUENCIES)}, got "{frequency}".'
            )

    at = raw.get("at")
    if at is not None:
        parse_hhmm(at, f"{field_path}.at")

    timezone_name = raw.get("timezone", default_timezone)
    parse_timezone(timezone_name, f"{field_path}.timezone")

    exclusive, lock_ttl = _parse_on_one_server(raw.get("on_one_server"), f"{field_path}.on_one_server")
    background = ensure_bool(raw.get("background"), f"{field_path}.background", False)
    node_raw = raw.get("node")
    node_role = None if node_raw is None else ensure_str(node_raw, f"{field_path}.node")
    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        raise ConfigError(f"Error: {field_path}.description must be a string.")

    return TaskSpec(
        name=name,
        command=command,
        cron=cron,
        frequency=frequency,
        at=at,
        timezone=timezone_name,
        exclusive=exclusive,
        lock_ttl=lock_ttl,
        background=background,
        node_role=node_role,
        description=description,
    )


def _parse_on_one_server(value: Any, field_path: str) -> Tuple[bool, int]:
    if value is None or value is False:
        return False, DEFAULT_LOCK_TTL_SECONDS
    if value is True:
        return True, DEFAULT_LOCK_TTL_SECONDS
    return True, ensure_int(value, field_path, DEFAULT_LOCK_TTL_SECONDS)


def register_tasks(manager: SchedulerManager, specs: List[TaskSpec]) -> List[TaskSchedule]:
    schedules: List[TaskSchedule] = []
    for spec in specs:
        schedule = manager.exec(spec.name, spec.command)
        if spec.cron is not None:
            schedule.cron(spec.cron)
        elif spec.frequency is not None:
            getattr(schedule, spec.frequency)()
        if spec.at is not None:
            schedule.at(spec.at)
        schedule.timezone(spec.timezone)
        if spec.exclusive:
            schedule.on_one_server(spec.lock_ttl)
        if spec.background:
            schedule.run_in_background()
        if spec.node_role is not None:
            schedule.on_node(spec.node_role)
        if spec.description is not None:
            schedule.describe(spec.description)
        schedules.append(schedule)
    return schedules


def install_scheduler(
    container: MutableMapping[str, Any],
    settings: SchedulerSettings,
    cache: Optional[SharedCache] = None,
    hooks: Optional[Hooks] = None,
) -> SchedulerManager:
    """Build a SchedulerManager from ``settings`` and register it under ``expose_as``."""
    lock_manager = LockManager(settings.lock_driver, cache=cache, prefix=settings.lock_prefix)
    manager = SchedulerManager(
        lock_manager=lock_manager,
        hooks=hooks,
        node_role=settings.node_role,
    )
    container[settings.expose_as] = manager
    return manager
