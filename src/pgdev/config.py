"""Configuration loader for pgdev.

Configuration values are merged from several sources, later ones winning:

1. Built-in defaults.
2. ``~/pgdev/config.yml`` (or an override path).
3. Environment variables prefixed with ``PGDEV_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PGDEV_PORTS__BASE=6432
    export PGDEV_SHELL=/usr/local/bin/bash

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The variables handed to blueprint scripts
(``PGDEV_INSTANCE_DIR`` and friends) and the active-instance marker
``PGDEV_INSTANCE`` share the prefix but are never treated as configuration.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .errors import PgdevError
from .exit_codes import ExitCode

ENV_PREFIX = "PGDEV_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
ACTIVE_INSTANCE_ENV_VAR = f"{ENV_PREFIX}INSTANCE"
BUILD_ENV_VARS = (
    f"{ENV_PREFIX}INSTANCE_DIR",
    f"{ENV_PREFIX}INSTALL_DIR",
    f"{ENV_PREFIX}SRC_DIR",
)
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR, ACTIVE_INSTANCE_ENV_VAR, *BUILD_ENV_VARS}

MAX_TCP_PORT = 65535


class ConfigError(PgdevError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.ENVIRONMENT


@dataclass(frozen=True)
class PortsConfig:
    """Port allocation range."""

    base: int = 5432
    max: int = MAX_TCP_PORT


@dataclass(frozen=True)
class ServerConfig:
    """Settings passed to the PostgreSQL tools of each instance."""

    initdb_args: tuple[str, ...] = ("--no-locale", "-E", "UTF8")
    log_tail_lines: int = 50


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for pgdev."""

    config_file: Path
    root: Path
    instances_dir: Path
    templates_dir: Path
    logs_dir: Path
    runtime_dir: Path
    default_link: Path
    lock_timeout: float
    shell: str
    editor: str | None
    ports: PortsConfig
    server: ServerConfig


# Paths left as ``None`` are derived from ``root`` once all sources are merged.
DEFAULTS: dict[str, object] = {
    "config_file": "~/pgdev/config.yml",
    "root": "~/pgdev",
    "instances_dir": None,
    "templates_dir": None,
    "logs_dir": None,
    "runtime_dir": None,
    "default_link": None,
    "lock_timeout": 30.0,
    "shell": "bash",
    "editor": None,
    "ports": {
        "base": 5432,
        "max": MAX_TCP_PORT,
    },
    "server": {
        "initdb_args": ["--no-locale", "-E", "UTF8"],
        "log_tail_lines": 50,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    ports = raw.get("ports")
    if ports is not None:
        ports_map = _as_dict(ports, "ports")
        unknown = set(ports_map.keys()) - {"base", "max"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown ports configuration keys: {joined}.")

    server = raw.get("server")
    if server is not None:
        server_map = _as_dict(server, "server")
        unknown = set(server_map.keys()) - {"initdb_args", "log_tail_lines"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown server configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    root = _to_path(raw.get("root"))

    instances_dir = _derived_path(raw.get("instances_dir"), root / "instances")
    templates_dir = _derived_path(raw.get("templates_dir"), root / "templates")
    logs_dir = _derived_path(raw.get("logs_dir"), root / "logs")
    runtime_dir = _derived_path(raw.get("runtime_dir"), root / "run")
    default_link = _derived_path(raw.get("default_link"), root / "pgsql")
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    shell = str(raw.get("shell") or "bash").strip()
    if not shell:
        raise ConfigError("shell must be a non-empty string.")
    editor_value = raw.get("editor")
    editor = str(editor_value).strip() if editor_value not in (None, "") else None

    ports_mapping = _as_dict(raw.get("ports"), "ports")
    base = _expect_int(ports_mapping.get("base"), "ports.base", default=5432)
    maximum = _expect_int(ports_mapping.get("max"), "ports.max", default=MAX_TCP_PORT)
    if not 1 <= base <= MAX_TCP_PORT:
        raise ConfigError(f"ports.base must be between 1 and {MAX_TCP_PORT}. Got {base}.")
    if maximum < base or maximum > MAX_TCP_PORT:
        raise ConfigError(
            f"ports.max must be between ports.base ({base}) and {MAX_TCP_PORT}. Got {maximum}."
        )
    ports = PortsConfig(base=base, max=maximum)

    server_mapping = _as_dict(raw.get("server"), "server")
    initdb_raw = server_mapping.get("initdb_args")
    if initdb_raw is None:
        initdb_args = ServerConfig().initdb_args
    elif isinstance(initdb_raw, str):
        initdb_args = tuple(initdb_raw.split())
    else:
        initdb_args = tuple(str(item) for item in _as_sequence(initdb_raw, "server.initdb_args"))
    tail_lines = _expect_int(
        server_mapping.get("log_tail_lines"), "server.log_tail_lines", default=50
    )
    if tail_lines < 1:
        raise ConfigError("server.log_tail_lines must be greater than zero.")
    server = ServerConfig(initdb_args=initdb_args, log_tail_lines=tail_lines)

    return AppConfig(
        config_file=config_file,
        root=root,
        instances_dir=instances_dir,
        templates_dir=templates_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        default_link=default_link,
        lock_timeout=lock_timeout,
        shell=shell,
        editor=editor,
        ports=ports,
        server=server,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _derived_path(value: object, fallback: Path) -> Path:
    if value in (None, ""):
        return fallback
    return _to_path(value)


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ACTIVE_INSTANCE_ENV_VAR",
    "AppConfig",
    "BUILD_ENV_VARS",
    "ConfigError",
    "PortsConfig",
    "ServerConfig",
    "load_config",
]
