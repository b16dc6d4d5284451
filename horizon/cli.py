"""
Command line entry point.

    horizon validate
    horizon preview --task nightly-report --count 3
    horizon run                      # one tick; call it from cron every minute
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from horizon.config import DEFAULT_CONFIG, install_scheduler, parse_config, register_tasks
from horizon.cron import next_date, next_dates
from horizon.errors import ConfigError, HorizonError, InvalidCronExpression
from horizon.hooks import LogHooks
from horizon.manager import SchedulerManager
from horizon.schedule import TaskDefinition
from horizon.utils import UTC, ensure_aware_utc

LOG_FILE = "horizon.log"
DEFAULT_PREVIEW_COUNT = 5

logger = logging.getLogger("horizon")


def setup_logging() -> logging.Logger:
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    return logger


def load_manager(
    config_path: Path,
    node_role: Optional[str] = None,
    hooks: Optional[LogHooks] = None,
    dispatch: bool = False,
) -> SchedulerManager:
    """Build a manager from the config file.

    Only ``dispatch=True`` managers take locks. The others fall back to the
    memory store so inspecting a cache-locked config needs no cache.
    """
    config = parse_config(config_path)
    settings = config.scheduler
    if node_role:
        settings = replace(settings, node_role=node_role)
    if not dispatch:
        settings = replace(settings, lock_driver="memory")
    elif settings.lock_driver == "cache":
        raise ConfigError(
            'Error: scheduler.lock.driver "cache" needs a shared cache from the host '
            'application; "horizon run" only supports the "memory" driver.'
        )
    manager = install_scheduler({}, settings, hooks=hooks)
    register_tasks(manager, config.tasks)
    return manager


def filter_tasks(tasks: List[TaskDefinition], task_name: Optional[str]) -> List[TaskDefinition]:
    if not task_name:
        return tasks
    selected = [task for task in tasks if task.name == task_name]
    if not selected:
        raise HorizonError(f'Unknown task "{task_name}".')
    return selected


def parse_at(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return ensure_aware_utc(datetime.fromisoformat(value))
    except ValueError as exc:
        raise HorizonError(f'--at must be an ISO datetime, got "{value}".') from exc


def command_validate(config_path: Path) -> int:
    manager = load_manager(config_path)
    tasks = manager.get_tasks()
    now_utc = datetime.now(tz=UTC)
    for task in tasks:
        try:
            next_date(task.expression, task.timezone, now_utc)
        except InvalidCronExpression as exc:
            raise ConfigError(f'Error: task "{task.name}" would never run: {exc}') from exc
    print(f"Config valid: {config_path}")
    print(f"Total tasks: {len(tasks)}")
    for task in tasks:
        flags = []
        if task.exclusive:
            flags.append(f"on_one_server={task.lock_ttl}s")
        if task.background:
            flags.append("background")
        if task.node_role:
            flags.append(f"node={task.node_role}")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"- {task.name}: {task.expression} ({task.timezone}){suffix}")
    return 0


def command_preview(config_path: Path, task_name: Optional[str], count: int) -> int:
    manager = load_manager(config_path)
    selected = filter_tasks(manager.get_tasks(), task_name)
    now_utc = datetime.now(tz=UTC)

    for task in selected:
        print("=" * 80)
        print(f"Task: {task.name}")
        if task.description:
            print(task.description)
        print(f"Cron: {task.expression} ({task.timezone})")
        if task.command:
            print(f"Command: {task.command}")
        print(f"Exclusive: {task.exclusive} (lock ttl {task.lock_ttl}s)")
        print(f"Background: {task.background}")
        print(f"Node role: {task.node_role or 'any'}")
        print(f"Next {count} run(s):")
        for run_dt in next_dates(task.expression, task.timezone, count, after=now_utc):
            print(f"- {run_dt.isoformat()}")
    print("=" * 80)
    return 0


def command_run(config_path: Path, at: Optional[datetime], node_role: Optional[str]) -> int:
    hooks = LogHooks(logger)
    manager = load_manager(config_path, node_role=node_role, hooks=hooks, dispatch=True)

    async def tick() -> None:
        await manager.run(at)
        await manager.wait_idle()

    asyncio.run(tick())
    if hooks.failed:
        logger.error("Failed task(s): %s", ", ".join(sorted(hooks.failed)))
        return 1
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="horizon cron task scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to horizon YAML config (default: {DEFAULT_CONFIG})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Validate config and cron expressions")

    preview_parser = subparsers.add_parser("preview", help="Show upcoming runs")
    preview_parser.add_argument("--task", help="Preview a single task by name")
    preview_parser.add_argument("--count", type=int, default=DEFAULT_PREVIEW_COUNT, help="Next run count")

    run_parser = subparsers.add_parser("run", help="Run one scheduler tick")
    run_parser.add_argument("--at", help="Evaluate the tick at this ISO datetime instead of now")
    run_parser.add_argument("--node-role", help="Override scheduler.node_role from the config")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    config_path = Path(args.config).resolve()

    try:
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "preview":
            if args.count <= 0:
                raise HorizonError("--count must be >= 1")
            return command_preview(config_path, task_name=args.task, count=args.count)
        if args.command == "run":
            return command_run(config_path, at=parse_at(args.at), node_role=args.node_role)
        raise HorizonError(f"Unsupported command: {args.command}")
    except HorizonError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
