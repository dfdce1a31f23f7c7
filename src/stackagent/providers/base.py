"""Shared contract and subprocess plumbing for orchestrator drivers."""
from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from ..errors import DriverError

LOGGER = logging.getLogger(__name__)

_PROJECT_NAME_INVALID = re.compile(r"[^a-z0-9_-]")


def project_name(name: str) -> str:
    """Return *name* normalised the way the orchestrator names projects."""
    return _PROJECT_NAME_INVALID.sub("", name.lower())


class OrchestratorDriver(Protocol):
    """Operations every orchestrator backend provides for a deployment directory."""

    #: Container label holding the project (or stack) name.
    project_label: str

    def up(self, directory: Path) -> subprocess.CompletedProcess[str]: ...

    def down(self, directory: Path) -> subprocess.CompletedProcess[str]: ...

    def restart(self, directory: Path) -> subprocess.CompletedProcess[str]: ...

    def pull(self, directory: Path) -> subprocess.CompletedProcess[str]: ...

    def logs(
        self,
        directory: Path,
        *,
        tail: int | None = None,
        since: str | None = None,
    ) -> str: ...


class DockerCLI:
    """Run ``docker`` sub-commands synchronously with combined output capture."""

    def __init__(self, docker_bin: str = "docker") -> None:
        self.docker_bin = docker_bin

    def _run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None,
        error_prefix: str,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603
                command,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DriverError(f"{self.docker_bin} not found: {exc}", command=command) from exc
        output = result.stdout or ""
        if result.returncode != 0:
            LOGGER.error(
                "%s failed in %s (exit %d): %s", error_prefix, cwd, result.returncode, output
            )
            message = output.strip() or "no output"
            raise DriverError(
                f"{error_prefix} failed (exit {result.returncode}): {message}",
                command=command,
                returncode=result.returncode,
                output=output,
            )
        LOGGER.debug("%s executed in %s: %s", error_prefix, cwd, output.strip())
        return result


__all__ = ["DockerCLI", "OrchestratorDriver", "project_name"]
