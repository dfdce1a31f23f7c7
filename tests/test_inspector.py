"""Container inspection tests."""
from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from stackagent.errors import DriverError
from stackagent.models import ContainerPort
from stackagent.providers.base import DockerCLI
from stackagent.providers.inspector import (
    DockerInspector,
    parse_exit_code,
    parse_labels,
    parse_ports,
    state_from_status,
)


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, stdout: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = 0
        self.stdout = stdout


def _patch_output(monkeypatch: pytest.MonkeyPatch, stdout: str) -> list[list[str]]:
    captured: list[list[str]] = []

    def fake_run_command(
        self: DockerCLI,
        args: Sequence[str],
        *,
        cwd: Path | None,
        error_prefix: str,
        env: Mapping[str, str] | None = None,
    ) -> DummyResult:
        captured.append(list(args))
        return DummyResult(stdout=stdout)

    monkeypatch.setattr(DockerCLI, "_run_command", fake_run_command)
    return captured


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("Exited (137) 2 hours ago", 137),
        ("Restarting (1) 5 seconds ago", 1),
        ("Up 3 minutes", 0),
        ("", 0),
    ],
)
def test_parse_exit_code(status: str, expected: int) -> None:
    """Exit codes are read from the human status."""
    assert parse_exit_code(status) == expected


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("Up 3 minutes", "running"),
        ("Up 3 minutes (Paused)", "paused"),
        ("Exited (0) 1 minute ago", "exited"),
        ("Restarting (1) 5 seconds ago", "restarting"),
        ("Dead", "dead"),
        ("weird", ""),
    ],
)
def test_state_from_status(status: str, expected: str) -> None:
    """Raw states are derived when the engine omits them."""
    assert state_from_status(status) == expected


def test_parse_ports_keeps_published_only() -> None:
    """Unpublished ports are dropped and duplicates across address families collapse."""
    raw = "0.0.0.0:8080->80/tcp, [::]:8080->80/tcp, 443/tcp, 127.0.0.1:5353->53/udp"

    assert parse_ports(raw) == (
        ContainerPort(private=80, public=8080, protocol="tcp", ip="0.0.0.0"),
        ContainerPort(private=53, public=5353, protocol="udp", ip="127.0.0.1"),
    )


def test_parse_ports_expands_ranges() -> None:
    """Port ranges produce one entry per port."""
    ports = parse_ports("0.0.0.0:9000-9001->9000-9001/tcp")

    assert [(port.public, port.private) for port in ports] == [(9000, 9000), (9001, 9001)]


def test_parse_labels() -> None:
    """Labels are accepted as a comma-separated string or a mapping."""
    assert parse_labels("a=1,com.docker.compose.project=shop") == {
        "a": "1",
        "com.docker.compose.project": "shop",
    }
    assert parse_labels({"a": 1}) == {"a": "1"}
    assert parse_labels(None) == {}


def test_list_containers_parses_json_lines(monkeypatch: pytest.MonkeyPatch) -> None:
    """Each JSON line becomes a container tagged with its project."""
    lines = [
        {
            "ID": "abc",
            "Names": "shop-web-1",
            "State": "running",
            "Status": "Up 2 minutes",
            "Ports": "0.0.0.0:8080->80/tcp",
            "Labels": "com.docker.compose.project=shop,other=x",
        },
        {
            "ID": "def",
            "Names": "shop-worker-1",
            "Status": "Exited (2) 1 minute ago",
            "Labels": "com.docker.compose.project=shop",
        },
    ]
    captured = _patch_output(monkeypatch, "\n".join(json.dumps(line) for line in lines) + "\n")

    containers = DockerInspector().list_containers("com.docker.compose.project", "shop")

    assert captured == [
        [
            "ps",
            "-a",
            "--no-trunc",
            "--filter",
            "label=com.docker.compose.project=shop",
            "--format",
            "{{json .}}",
        ]
    ]
    web, worker = containers
    assert web.name == "shop-web-1"
    assert web.raw_state == "running"
    assert web.project == "shop"
    assert web.ports[0].public == 8080
    assert worker.raw_state == "exited"
    assert worker.exit_code == 2
    assert worker.status_text == "Exited (2) 1 minute ago"


def test_list_containers_without_value_filters_on_label(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Omitting the value lists every labelled container."""
    captured = _patch_output(monkeypatch, "")

    assert DockerInspector().list_containers("com.docker.compose.project") == []
    assert "label=com.docker.compose.project" in captured[0]


def test_list_containers_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    """Output that is not JSON is reported as a driver error."""
    _patch_output(monkeypatch, "not json\n")

    with pytest.raises(DriverError):
        DockerInspector().list_containers("com.docker.compose.project")
