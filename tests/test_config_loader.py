"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from stackagent.config import AgentConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AgentConfig)
    assert config.base_path == Path("/opt/stackagent")
    assert config.apps_path == Path("/opt/stackagent/apps")
    assert config.apps_templates_path == Path("/opt/stackagent/apps_templates")
    assert config.registry_dir == Path("/opt/stackagent/registry")
    assert config.orchestrator == "docker_compose"
    assert config.keep_app_revisions == 5
    assert config.lock_timeout == 30.0
    assert config.compose.docker_bin == "docker"
    assert config.compose.env_file == ".stackagent.env"
    assert config.compose.extension_files == ("expose",)
    assert config.compose.strict_base_file is True


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "stackagent.yml"
    cfg.write_text(
        f"base_path: {tmp_path / 'base'}\n"
        "orchestrator: docker_swarm\n"
        "keep_app_revisions: 3\n"
        "compose:\n"
        "  docker_bin: /usr/local/bin/docker\n"
        "  extension_files: [expose, monitoring]\n"
        "  strict_base_file: false\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.base_path == tmp_path / "base"
    assert config.apps_path == tmp_path / "base" / "apps"
    assert config.orchestrator == "docker_swarm"
    assert config.keep_app_revisions == 3
    assert config.compose.docker_bin == "/usr/local/bin/docker"
    assert config.compose.extension_files == ("expose", "monitoring")
    assert config.compose.strict_base_file is False


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "stackagent.yml"
    cfg.write_text("keep_app_revisions: 3\nlock_timeout: 10\n")
    env = {
        "STACKAGENT_CONFIG_FILE": str(cfg),
        "STACKAGENT_KEEP_APP_REVISIONS": "8",
        "STACKAGENT_APPS_PATH": str(tmp_path / "apps"),
        "STACKAGENT_COMPOSE__DOCKER_BIN": "podman",
        "STACKAGENT_COMPOSE__STRICT_BASE_FILE": "false",
        "UNRELATED": "ignored",
    }

    config = load_config(env=env)

    assert config.config_file == cfg
    assert config.keep_app_revisions == 8
    assert config.lock_timeout == 10.0
    assert config.apps_path == tmp_path / "apps"
    assert config.compose.docker_bin == "podman"
    assert config.compose.strict_base_file is False


def test_overrides_take_precedence_over_env(tmp_path: Path) -> None:
    """Programmatic overrides win over environment variables."""
    env = {"STACKAGENT_LOCK_TIMEOUT": "45"}

    config = load_config(
        config_file=tmp_path / "missing.yml",
        env=env,
        overrides={"lock_timeout": 2.5},
    )

    assert config.lock_timeout == 2.5


def test_unknown_keys_raise(tmp_path: Path) -> None:
    """Unknown top-level keys are rejected."""
    cfg = tmp_path / "stackagent.yml"
    cfg.write_text("unexpected: true\n")

    with pytest.raises(ConfigError, match="unexpected"):
        load_config(config_file=cfg, env={})


def test_unknown_orchestrator_raises(tmp_path: Path) -> None:
    """Only the supported orchestrators are accepted."""
    with pytest.raises(ConfigError, match="kubernetes"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={"STACKAGENT_ORCHESTRATOR": "kubernetes"},
        )


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("STACKAGENT_LOCK_TIMEOUT", "0"),
        ("STACKAGENT_LOCK_TIMEOUT", "soon"),
        ("STACKAGENT_KEEP_APP_REVISIONS", "0"),
        ("STACKAGENT_KEEP_APP_REVISIONS", "true"),
        ("STACKAGENT_COMPOSE__ENV_FILE", "nested/env"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, key: str, value: str) -> None:
    """Out-of-range and mistyped values raise ConfigError."""
    with pytest.raises(ConfigError):
        load_config(config_file=tmp_path / "missing.yml", env={key: value})


def test_non_mapping_file_raises(tmp_path: Path) -> None:
    """A config file must contain a mapping."""
    cfg = tmp_path / "stackagent.yml"
    cfg.write_text("- just\n- a list\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """``to_dict`` renders paths as strings and nests the compose section."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    data = config.to_dict()

    assert data["apps_path"] == "/opt/stackagent/apps"
    assert data["compose"] == {
        "docker_bin": "docker",
        "env_file": ".stackagent.env",
        "extension_files": ["expose"],
        "strict_base_file": True,
    }
