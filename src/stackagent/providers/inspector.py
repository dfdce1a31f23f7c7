"""Container discovery through ``docker ps``."""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping

from ..errors import DriverError
from ..models import Container, ContainerPort
from .base import DockerCLI

LOGGER = logging.getLogger(__name__)

_EXIT_CODE = re.compile(r"^(?:Exited|Restarting)\s*\((-?\d+)\)")
_PORT = re.compile(
    r"^(?:(?P<ip>\[[^\]]*\]|[^\s]*?):)?(?P<public>\d+(?:-\d+)?)->"
    r"(?P<private>\d+(?:-\d+)?)/(?P<proto>\w+)$"
)


def parse_exit_code(status: str) -> int:
    """Extract the exit code from a human status such as ``Exited (2) 3 minutes ago``."""
    match = _EXIT_CODE.match(status.strip())
    return int(match.group(1)) if match else 0


def state_from_status(status: str) -> str:
    """Derive the raw state from the human status for engines that omit ``State``."""
    text = status.strip().lower()
    if "(paused)" in text:
        return "paused"
    for prefix, state in (
        ("up", "running"),
        ("exited", "exited"),
        ("restarting", "restarting"),
        ("created", "created"),
        ("removal", "removing"),
        ("dead", "dead"),
    ):
        if text.startswith(prefix):
            return state
    return ""


def _expand(port_range: str) -> list[int]:
    start, _, end = port_range.partition("-")
    if not end:
        return [int(start)]
    return list(range(int(start), int(end) + 1))


def parse_ports(raw: str) -> tuple[ContainerPort, ...]:
    """Parse the ``Ports`` column, keeping only published ports."""
    ports: list[ContainerPort] = []
    seen: set[tuple[int, int, str]] = set()
    for chunk in raw.split(","):
        match = _PORT.match(chunk.strip())
        if match is None:
            continue
        publics = _expand(match.group("public"))
        privates = _expand(match.group("private"))
        if len(privates) != len(publics):
            privates = [privates[0]] * len(publics)
        ip = (match.group("ip") or "").strip("[]")
        protocol = match.group("proto")
        for public, private in zip(publics, privates):
            key = (private, public, protocol)
            if public <= 0 or key in seen:
                continue
            seen.add(key)
            ports.append(ContainerPort(private=private, public=public, protocol=protocol, ip=ip))
    return tuple(ports)


def parse_labels(raw: object) -> dict[str, str]:
    if isinstance(raw, Mapping):
        return {str(key): str(value) for key, value in raw.items()}
    labels: dict[str, str] = {}
    for item in str(raw or "").split(","):
        key, sep, value = item.partition("=")
        if sep:
            labels[key.strip()] = value.strip()
    return labels


class DockerInspector(DockerCLI):
    """List containers carrying a project label."""

    def list_containers(self, label: str, value: str | None = None) -> list[Container]:
        """Return every container (running or not) with *label*, optionally equal to *value*."""
        selector = f"{label}={value}" if value is not None else label
        result = self._run_command(
            ["ps", "-a", "--no-trunc", "--filter", f"label={selector}", "--format", "{{json .}}"],
            cwd=None,
            error_prefix="docker ps",
        )
        containers: list[Container] = []
        for line in (result.stdout or "").splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                raise DriverError(
                    f"Unexpected docker ps output: {line!r}", output=result.stdout or ""
                ) from exc
            containers.append(self._parse(payload, label))
        LOGGER.debug("docker ps %s returned %d containers", selector, len(containers))
        return containers

    @staticmethod
    def _parse(payload: Mapping[str, object], label: str) -> Container:
        status = str(payload.get("Status") or "")
        state = str(payload.get("State") or "") or state_from_status(status)
        names = str(payload.get("Names") or "")
        labels = parse_labels(payload.get("Labels"))
        return Container(
            id=str(payload.get("ID") or ""),
            name=names.split(",")[0].lstrip("/"),
            raw_state=state,
            exit_code=parse_exit_code(status),
            ports=parse_ports(str(payload.get("Ports") or "")),
            project=labels.get(label, ""),
            status_text=status,
        )


__all__ = [
    "DockerInspector",
    "parse_exit_code",
    "parse_labels",
    "parse_ports",
    "state_from_status",
]
