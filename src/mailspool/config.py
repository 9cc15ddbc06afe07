from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any, cast

import yaml

LOGGER = logging.getLogger(__name__)

TRUTHY_VALUES = {"1", "true", "yes", "on"}

_DEFAULT_CONFIG_VALUES: dict[str, Any] = {
    "queue_dir": "queue",
    "log_file": "logs/mailspool.log",
    "log_level": "INFO",
    "log_console_level": "WARNING",
    "log_console_enabled": True,
    "log_max_bytes": 1_000_000,
    "log_backup_count": 3,
    "transport_command": "msmtp",
    "transport_config": "~/.msmtprc",
    "poll_interval_seconds": 30,
    "immediate_probe_timeout_seconds": 2,
    "watcher_probe_timeout_seconds": 10,
    "watcher_lock_file": "",
}

_ENV_OVERRIDES: dict[str, str] = {
    "MAILSPOOL_QUEUE_DIR": "queue_dir",
    "MAILSPOOL_LOG_FILE": "log_file",
    "MAILSPOOL_TRANSPORT": "transport_command",
    "MAILSPOOL_TRANSPORT_CONFIG": "transport_config",
}


def get_user_data_dir() -> Path:
    override = os.environ.get("MAILSPOOL_DATA_DIR")
    if override:
        return Path(override)
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data) / "mailspool"
    return Path.home() / ".local" / "share" / "mailspool"


def get_config_path() -> Path:
    override = os.environ.get("MAILSPOOL_CONFIG")
    if override:
        return Path(override)
    return get_user_data_dir() / "config.yaml"


@dataclass(frozen=True)
class SpoolConfig:
    queue_dir: str
    log_file: str
    log_level: str
    log_console_level: str
    log_console_enabled: bool
    log_max_bytes: int
    log_backup_count: int
    transport_command: str
    transport_config: str
    poll_interval_seconds: float
    immediate_probe_timeout_seconds: float
    watcher_probe_timeout_seconds: float
    watcher_lock_file: str

    @property
    def queue_path(self) -> Path:
        return Path(self.queue_dir)

    @property
    def watcher_lock_path(self) -> Path:
        return Path(self.watcher_lock_file)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    raw: object = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config must be a mapping")
    return cast(dict[str, Any], raw)


def _apply_config_defaults(data: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(data) - set(_DEFAULT_CONFIG_VALUES))
    if unknown:
        LOGGER.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
    updated = dict(_DEFAULT_CONFIG_VALUES)
    updated.update({key: value for key, value in data.items() if key in _DEFAULT_CONFIG_VALUES})
    missing = sorted(set(_DEFAULT_CONFIG_VALUES) - set(data))
    if missing:
        LOGGER.debug("Defaults applied for missing keys: %s", ", ".join(missing))
    return updated


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    updated = dict(data)
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            updated[key] = value
    debug = os.environ.get("MAILSPOOL_DEBUG", "")
    if debug.strip().lower() in TRUTHY_VALUES:
        updated["log_level"] = "DEBUG"
        updated["log_console_level"] = "DEBUG"
    return updated


def _resolve_path(base: Path, value: str) -> str:
    candidate = Path(value).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    return str(candidate)


def _build_config(data: dict[str, Any]) -> SpoolConfig:
    base = get_user_data_dir()
    queue_dir = _resolve_path(base, str(data["queue_dir"]))
    lock_raw = str(data.get("watcher_lock_file") or "")
    watcher_lock_file = (
        _resolve_path(base, lock_raw) if lock_raw else str(Path(queue_dir) / ".watcher.lock")
    )
    return SpoolConfig(
        queue_dir=queue_dir,
        log_file=_resolve_path(base, str(data["log_file"])),
        log_level=str(data["log_level"]).upper(),
        log_console_level=str(data["log_console_level"]).upper(),
        log_console_enabled=bool(data["log_console_enabled"]),
        log_max_bytes=int(data["log_max_bytes"]),
        log_backup_count=int(data["log_backup_count"]),
        transport_command=str(data["transport_command"]).strip(),
        transport_config=str(Path(str(data["transport_config"])).expanduser()),
        poll_interval_seconds=float(data["poll_interval_seconds"]),
        immediate_probe_timeout_seconds=float(data["immediate_probe_timeout_seconds"]),
        watcher_probe_timeout_seconds=float(data["watcher_probe_timeout_seconds"]),
        watcher_lock_file=watcher_lock_file,
    )


def _is_valid_log_level(level: str) -> bool:
    return str(level).upper() in logging.getLevelNamesMapping()


def _validate_config(config: SpoolConfig) -> None:
    if not config.transport_command:
        raise ValueError("transport_command is required")
    if config.poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be > 0")
    if config.immediate_probe_timeout_seconds <= 0:
        raise ValueError("immediate_probe_timeout_seconds must be > 0")
    if config.watcher_probe_timeout_seconds <= 0:
        raise ValueError("watcher_probe_timeout_seconds must be > 0")
    if config.log_max_bytes < 1024:
        raise ValueError("log_max_bytes must be >= 1024")
    if config.log_backup_count < 0:
        raise ValueError("log_backup_count must be >= 0")
    if not _is_valid_log_level(config.log_level):
        raise ValueError("log_level must be a valid logging level")
    if not _is_valid_log_level(config.log_console_level):
        raise ValueError("log_console_level must be a valid logging level")


def build_config(overrides: dict[str, Any] | None = None) -> SpoolConfig:
    data = _apply_config_defaults(dict(overrides or {}))
    config = _build_config(data)
    _validate_config(config)
    return config


def load_config(path: str | None = None) -> SpoolConfig:
    if path is not None:
        data = _load_yaml(Path(path))
    else:
        config_path = get_config_path()
        data = _load_yaml(config_path) if config_path.exists() else {}
    data = _apply_env_overrides(_apply_config_defaults(data))
    config = _build_config(data)
    _validate_config(config)
    return config
