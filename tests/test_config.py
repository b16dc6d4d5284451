from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml

from horizon.config import (
    HorizonConfig,
    SchedulerSettings,
    install_scheduler,
    parse_config,
    register_tasks,
)
from horizon.errors import ConfigError
from horizon.locks import CacheLockStore, MemoryLockStore
from horizon.manager import SchedulerManager


def _base_config(tasks: List[Dict[str, Any]], **overrides: Any) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        "version": 1,
        "defaults": {"timezone": "UTC"},
        "tasks": tasks,
    }
    config.update(overrides)
    return config


def _write_config(tmp_path: Path, config: Dict[str, Any]) -> Path:
    path = tmp_path / "horizon.yaml"
    path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return path


def _load(tmp_path: Path, config: Dict[str, Any]) -> HorizonConfig:
    return parse_config(_write_config(tmp_path, config))


def test_parse_and_register_tasks(tmp_path: Path) -> None:
    config = _load(
        tmp_path,
        _base_config(
            [
                {
                    "name": "nightly-report",
                    "command": "echo report",
                    "frequency": "daily",
                    "at": "02:00",
                    "timezone": "Asia/Taipei",
                    "on_one_server": 120,
                    "background": True,
                    "node": "worker",
                    "description": "Nightly report",
                },
                {"name": "sweep", "command": "echo sweep", "cron": "*/10 * * * *", "on_one_server": True},
                {"name": "ping", "command": "echo ping"},
            ],
            scheduler={"lock": {"driver": "memory", "prefix": "app:"}, "node_role": "worker"},
        ),
    )
    assert config.scheduler == SchedulerSettings(lock_prefix="app:", node_role="worker")

    manager = SchedulerManager()
    register_tasks(manager, config.tasks)
    report, sweep, ping = manager.get_tasks()

    assert report.expression == "0 2 * * *"
    assert report.timezone == "Asia/Taipei"
    assert (report.exclusive, report.lock_ttl) == (True, 120)
    assert report.background is True
    assert report.node_role == "worker"
    assert report.command == "echo report"
    assert report.description == "Nightly report"

    assert sweep.expression == "*/10 * * * *"
    assert (sweep.exclusive, sweep.lock_ttl) == (True, 300)

    assert ping.expression == "* * * * *"
    assert ping.timezone == "UTC"
    assert ping.exclusive is False


def test_defaults_timezone_applies_to_tasks(tmp_path: Path) -> None:
    config = _load(
        tmp_path,
        _base_config(
            [{"name": "job", "command": "true", "frequency": "hourly"}],
            defaults={"timezone": "Europe/Berlin"},
        ),
    )
    assert config.tasks[0].timezone == "Europe/Berlin"
    assert config.scheduler == SchedulerSettings()


@pytest.mark.parametrize(
    "task,message",
    [
        ({"name": "job", "command": "true", "cron": "* * * * *", "frequency": "daily"}, "not both"),
        ({"name": "job", "command": "true", "frequency": "fortnightly"}, "frequency must be one of"),
        ({"name": "job", "command": "true", "at": "25:00"}, "HH:MM"),
        ({"name": "job", "command": "true", "timezone": "Nowhere/City"}, "Invalid timezone"),
        ({"name": "job", "command": "true", "on_one_server": 0}, "must be >= 1"),
        ({"name": "job", "command": "true", "background": "yes"}, "true or false"),
        ({"name": "job", "command": ""}, "command must be a non-empty string"),
        ({"command": "true"}, "name must be a non-empty string"),
        ({"name": "job", "command": "true", "retries": 3}, "Unknown keys"),
    ],
)
def test_invalid_task_rejected(tmp_path: Path, task: Dict[str, Any], message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        _load(tmp_path, _base_config([task]))


def test_duplicate_task_names_rejected(tmp_path: Path) -> None:
    tasks = [{"name": "job", "command": "true"}, {"name": "job", "command": "false"}]
    with pytest.raises(ConfigError, match='Duplicate task name "job"'):
        _load(tmp_path, _base_config(tasks))


def test_invalid_top_level_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Unknown top-level keys"):
        _load(tmp_path, _base_config([], jobs=[]))
    with pytest.raises(ConfigError, match="Unknown keys in defaults"):
        _load(tmp_path, _base_config([], defaults={"working_dir": "."}))
    with pytest.raises(ConfigError, match="lock.driver must be one of"):
        _load(tmp_path, _base_config([], scheduler={"lock": {"driver": "redis"}}))


def test_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        parse_config(tmp_path / "missing.yaml")
    path = tmp_path / "broken.yaml"
    path.write_text("tasks: [\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse YAML"):
        parse_config(path)
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="Top-level config must be a mapping"):
        parse_config(path)


def test_at_requires_five_field_cron(tmp_path: Path) -> None:
    config = _load(
        tmp_path,
        _base_config([{"name": "job", "command": "true", "cron": "@daily", "at": "02:00"}]),
    )
    with pytest.raises(ConfigError, match="5-field"):
        register_tasks(SchedulerManager(), config.tasks)


def test_install_scheduler_exposes_manager() -> None:
    container: Dict[str, Any] = {}
    manager = install_scheduler(container, SchedulerSettings(expose_as="cron", node_role="api"))
    assert container == {"cron": manager}
    assert manager.node_role == "api"
    assert isinstance(manager.lock_manager.store, MemoryLockStore)


def test_install_scheduler_cache_driver() -> None:
    class Cache:
        def add(self, key: str, value: Any, ttl_seconds: int) -> bool:
            return True

        def put(self, key: str, value: Any, ttl_seconds: int) -> None:
            return None

        def forget(self, key: str) -> None:
            return None

        def has(self, key: str) -> bool:
            return False

    settings = SchedulerSettings(lock_driver="cache", lock_prefix="app:")
    manager = install_scheduler({}, settings, cache=Cache())
    store = manager.lock_manager.store
    assert isinstance(store, CacheLockStore)
    assert store.prefix == "app:"

    with pytest.raises(ConfigError, match="requires a shared cache"):
        install_scheduler({}, settings)
