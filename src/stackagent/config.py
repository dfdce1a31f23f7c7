"""Configuration loader for stackagent.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/stackagent/config.yml`` (or an override path).
3. Environment variables prefixed with ``STACKAGENT_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export STACKAGENT_COMPOSE__DOCKER_BIN=/usr/local/bin/docker
    export STACKAGENT_KEEP_APP_REVISIONS=10

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover
    raise RuntimeError(
        "PyYAML is required to load stackagent configuration. Install with "
        "`pip install stackagent` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "STACKAGENT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

ORCHESTRATOR_COMPOSE = "docker_compose"
ORCHESTRATOR_SWARM = "docker_swarm"
ALLOWED_ORCHESTRATORS = {ORCHESTRATOR_COMPOSE, ORCHESTRATOR_SWARM}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ComposeConfig:
    """Settings for the compose-style orchestrator CLI."""

    docker_bin: str = "docker"
    env_file: str = ".stackagent.env"
    extension_files: tuple[str, ...] = ("expose",)
    strict_base_file: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker_bin": self.docker_bin,
            "env_file": self.env_file,
            "extension_files": list(self.extension_files),
            "strict_base_file": self.strict_base_file,
        }


@dataclass(frozen=True)
class AgentConfig:
    """Resolved configuration values for stackagent."""

    config_file: Path
    base_path: Path
    apps_path: Path
    apps_templates_path: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    lock_timeout: float
    orchestrator: str
    keep_app_revisions: int
    compose: ComposeConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "base_path": str(self.base_path),
            "apps_path": str(self.apps_path),
            "apps_templates_path": str(self.apps_templates_path),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "lock_timeout": self.lock_timeout,
            "orchestrator": self.orchestrator,
            "keep_app_revisions": self.keep_app_revisions,
            "compose": self.compose.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/stackagent/config.yml",
    "base_path": "/opt/stackagent",
    "apps_path": None,  # derived from base_path when absent
    "apps_templates_path": None,  # derived from base_path when absent
    "registry_dir": None,  # derived from base_path when absent
    "logs_dir": "/var/log/stackagent",
    "runtime_dir": "/run/stackagent",
    "lock_timeout": 30.0,
    "orchestrator": ORCHESTRATOR_COMPOSE,
    "keep_app_revisions": 5,
    "compose": {
        "docker_bin": "docker",
        "env_file": ".stackagent.env",
        "extension_files": ["expose"],
        "strict_base_file": True,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_COMPOSE_KEYS = {"docker_bin", "env_file", "extension_files", "strict_base_file"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AgentConfig:
    """Load and merge configuration sources into an :class:`AgentConfig`."""
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

    return _build_agent_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


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

    orchestrator = raw.get("orchestrator")
    if orchestrator is not None and str(orchestrator) not in ALLOWED_ORCHESTRATORS:
        allowed = ", ".join(sorted(ALLOWED_ORCHESTRATORS))
        raise ConfigError(f"Unsupported orchestrator '{orchestrator}'. Allowed: {allowed}.")

    compose = raw.get("compose")
    if compose is not None:
        compose_map = _as_dict(compose, "compose")
        unknown = set(compose_map.keys()) - ALLOWED_COMPOSE_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown compose configuration keys: {joined}.")
        extensions = compose_map.get("extension_files")
        if extensions is not None:
            for index, item in enumerate(_as_sequence(extensions, "compose.extension_files")):
                if not isinstance(item, str) or not item.strip():
                    raise ConfigError(
                        f"compose.extension_files[{index}] must be a non-empty string."
                    )


def _build_agent_config(raw: Mapping[str, object]) -> AgentConfig:
    config_file = _to_path(raw.get("config_file"))
    base_path = _to_path(raw.get("base_path"))
    logs_dir = _to_path(raw.get("logs_dir"))
    runtime_dir = _to_path(raw.get("runtime_dir"))

    apps_value = raw.get("apps_path")
    apps_path = _to_path(apps_value) if apps_value else base_path / "apps"
    templates_value = raw.get("apps_templates_path")
    apps_templates_path = (
        _to_path(templates_value) if templates_value else base_path / "apps_templates"
    )
    registry_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_value) if registry_value else base_path / "registry"

    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)
    keep_app_revisions = _expect_int(
        raw.get("keep_app_revisions"), "keep_app_revisions", default=5
    )
    if keep_app_revisions < 1:
        raise ConfigError("keep_app_revisions must be at least 1.")

    compose_mapping = _as_dict(raw.get("compose"), "compose")
    extensions_raw = compose_mapping.get("extension_files")
    if extensions_raw is None:
        extension_files: tuple[str, ...] = ComposeConfig().extension_files
    else:
        extension_files = tuple(
            str(item).strip()
            for item in _as_sequence(extensions_raw, "compose.extension_files")
        )
    strict_raw = compose_mapping.get("strict_base_file", True)
    if not isinstance(strict_raw, bool):
        raise ConfigError("compose.strict_base_file must be a boolean.")
    env_file = str(compose_mapping.get("env_file", ".stackagent.env")).strip()
    if not env_file or "/" in env_file:
        raise ConfigError("compose.env_file must be a bare file name.")

    compose = ComposeConfig(
        docker_bin=str(compose_mapping.get("docker_bin", "docker")),
        env_file=env_file,
        extension_files=extension_files,
        strict_base_file=strict_raw,
    )

    return AgentConfig(
        config_file=config_file,
        base_path=base_path,
        apps_path=apps_path,
        apps_templates_path=apps_templates_path,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        lock_timeout=lock_timeout,
        orchestrator=str(raw.get("orchestrator", ORCHESTRATOR_COMPOSE)),
        keep_app_revisions=keep_app_revisions,
        compose=compose,
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
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


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
    "ALLOWED_ORCHESTRATORS",
    "AgentConfig",
    "ComposeConfig",
    "ConfigError",
    "ORCHESTRATOR_COMPOSE",
    "ORCHESTRATOR_SWARM",
    "load_config",
]
