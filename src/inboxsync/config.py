from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PathsConfig:
    state_db: str


@dataclass(frozen=True)
class SyncConfig:
    timeout_seconds: float
    window_days: int


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    base_delay_seconds: float
    max_delay_seconds: float


@dataclass(frozen=True)
class PriorityConfig:
    urgent_keywords: list[str]
    normal_escalation_hours: float
    high_escalation_hours: float


@dataclass(frozen=True)
class ApiConfig:
    token: str


@dataclass(frozen=True)
class Config:
    paths: PathsConfig
    sync: SyncConfig
    retry: RetryConfig
    priority: PriorityConfig
    api: ApiConfig
    sources: list[dict[str, Any]]


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "state_db": "./data/inbox.sqlite3",
    },
    "sync": {
        "timeout_seconds": 30.0,
        "window_days": 7,
    },
    "retry": {
        "max_attempts": 3,
        "base_delay_seconds": 1.0,
        "max_delay_seconds": 120.0,
    },
    "priority": {
        "urgent_keywords": [
            "urgent",
            "critical",
            "hotfix",
            "p0",
            "sev-0",
            "outage",
            "down",
        ],
        "normal_escalation_hours": 24.0,
        "high_escalation_hours": 48.0,
    },
    "api": {
        "token": "",
    },
    "sources": [],
}

_SOURCE_KINDS = ("feed", "file")


def get_config_path(path: str | None = None) -> str:
    return path or os.environ.get("INBOX_CONFIG_PATH") or "config.yml"


def load_config(path: str | None = None) -> Config:
    config_path = get_config_path(path)
    raw: Any = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid config: cannot parse {config_path}: {exc}") from exc
    elif path:
        raise ConfigError(f"Invalid config: {config_path} does not exist")
    if not isinstance(raw, dict):
        raise ConfigError("Invalid config: top level must be a mapping")
    cfg = _merge(_deep_copy(DEFAULT_CONFIG), raw)
    _apply_env_overrides(cfg)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    if not errors:
        _validate_sources(cfg.get("sources") or [], errors)
        if cfg["sync"]["timeout_seconds"] <= 0:
            errors.append("config.sync.timeout_seconds must be positive")
        if cfg["retry"]["max_attempts"] < 1:
            errors.append("config.retry.max_attempts must be at least 1")
    return errors


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    db_path = os.environ.get("INBOX_DB_PATH", "").strip()
    if db_path:
        cfg["paths"]["state_db"] = db_path
    token = os.environ.get("INBOX_API_TOKEN")
    if token is not None:
        cfg["api"]["token"] = token


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _validate_sources(sources: list[Any], errors: list[str]) -> None:
    seen: set[str] = set()
    for index, spec in enumerate(sources):
        path = f"config.sources[{index}]"
        if not isinstance(spec, dict):
            errors.append(f"{path} must be an object")
            continue
        name = spec.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(f"{path}.name must be a non-empty string")
        elif name in seen:
            errors.append(f"{path}.name {name} is duplicated")
        else:
            seen.add(name)
        kind = spec.get("kind")
        if kind not in _SOURCE_KINDS:
            errors.append(f"{path}.kind must be one of {', '.join(_SOURCE_KINDS)}")
        elif kind == "feed" and not spec.get("url"):
            errors.append(f"{path}.url is required for feed sources")
        elif kind == "file" and not spec.get("path"):
            errors.append(f"{path}.path is required for file sources")


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, list):
        if not isinstance(value, list):
            errors.append(f"{path} must be a list")
            return
        if default:
            sample = default[0]
            for item in value:
                if not isinstance(item, type(sample)):
                    errors.append(f"{path} must be a list of {type(sample).__name__}")
                    break
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        return
    if isinstance(default, float):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        return
    if isinstance(default, str):
        if not isinstance(value, str):
            errors.append(f"{path} must be a string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    paths_cfg = cfg["paths"]
    sync_cfg = cfg["sync"]
    retry_cfg = cfg["retry"]
    priority_cfg = cfg["priority"]
    api_cfg = cfg["api"]

    return Config(
        paths=PathsConfig(state_db=str(paths_cfg["state_db"])),
        sync=SyncConfig(
            timeout_seconds=float(sync_cfg["timeout_seconds"]),
            window_days=int(sync_cfg["window_days"]),
        ),
        retry=RetryConfig(
            max_attempts=int(retry_cfg["max_attempts"]),
            base_delay_seconds=float(retry_cfg["base_delay_seconds"]),
            max_delay_seconds=float(retry_cfg["max_delay_seconds"]),
        ),
        priority=PriorityConfig(
            urgent_keywords=[str(keyword) for keyword in priority_cfg["urgent_keywords"]],
            normal_escalation_hours=float(priority_cfg["normal_escalation_hours"]),
            high_escalation_hours=float(priority_cfg["high_escalation_hours"]),
        ),
        api=ApiConfig(token=str(api_cfg["token"])),
        sources=[dict(spec) for spec in cfg["sources"]],
    )


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
