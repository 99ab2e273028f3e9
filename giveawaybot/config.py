from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import os
import yaml


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    file: Path = Path("logs") / "log.txt"


@dataclass(slots=True)
class SnapshotConfig:
    path: Path = Path("giveaways_restart.txt")
    checkpoint_minutes: float = 5


@dataclass(slots=True)
class SchedulerConfig:
    tick_seconds: float = 1
    max_workers: int = 4


@dataclass(slots=True)
class DialogueConfig:
    timeout_seconds: float = 120


@dataclass(slots=True)
class RerollConfig:
    exclude_previous_winners: bool = True
    history_size: int = 100


@dataclass(slots=True)
class Config:
    token: str
    prefix: str = "!g"
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    dialogue: DialogueConfig = field(default_factory=DialogueConfig)
    reroll: RerollConfig = field(default_factory=RerollConfig)


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]

def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{key} must be a mapping.")
    return section


def _positive_number(section: Dict[str, Any], key: str, default: float, name: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{name} must be a positive number.")
    return value


def _positive_int(section: Dict[str, Any], key: str, default: int, name: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer.")
    return value


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"logging.level has unknown value: {level!r}")
    log_file = data.get("file") or LoggingConfig().file
    return LoggingConfig(level=level, file=Path(log_file))


def _parse_snapshot(data: Dict[str, Any]) -> SnapshotConfig:
    path = data.get("path") or SnapshotConfig().path
    checkpoint_minutes = _positive_number(
        data, "checkpoint_minutes", 5, "snapshot.checkpoint_minutes"
    )
    return SnapshotConfig(path=Path(path), checkpoint_minutes=checkpoint_minutes)


def _parse_scheduler(data: Dict[str, Any]) -> SchedulerConfig:
    return SchedulerConfig(
        tick_seconds=_positive_number(data, "tick_seconds", 1, "scheduler.tick_seconds"),
        max_workers=_positive_int(data, "max_workers", 4, "scheduler.max_workers"),
    )


def _parse_dialogue(data: Dict[str, Any]) -> DialogueConfig:
    return DialogueConfig(
        timeout_seconds=_positive_number(
            data, "timeout_seconds", 120, "dialogue.timeout_seconds"
        )
    )


def _parse_reroll(data: Dict[str, Any]) -> RerollConfig:
    exclude = data.get("exclude_previous_winners", True)
    if not isinstance(exclude, bool):
        raise ConfigError("reroll.exclude_previous_winners must be true or false.")
    return RerollConfig(
        exclude_previous_winners=exclude,
        history_size=_positive_int(data, "history_size", 100, "reroll.history_size"),
    )


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    prefix = str(data.get("prefix", "!g"))
    if not prefix.strip():
        raise ConfigError("prefix must not be empty.")

    return Config(
        token=token,
        prefix=prefix,
        logging=_parse_logging(_section(data, "logging")),
        snapshot=_parse_snapshot(_section(data, "snapshot")),
        scheduler=_parse_scheduler(_section(data, "scheduler")),
        dialogue=_parse_dialogue(_section(data, "dialogue")),
        reroll=_parse_reroll(_section(data, "reroll")),
    )
