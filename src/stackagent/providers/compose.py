"""``docker compose`` driver operating on rendered deployment directories."""
from __future__ import annotations

import subprocess
from pathlib import Path

from .base import DockerCLI
from .project_files import ProjectFileResolver, file_args

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"


class ComposeDriver(DockerCLI):
    """Bring compose projects up and down.

    Every command runs with the deployment directory as working directory so
    the orchestrator derives the project name from it. Project files are only
    passed explicitly when overlays exist.
    """

    project_label = COMPOSE_PROJECT_LABEL

    def __init__(
        self,
        *,
        docker_bin: str = "docker",
        env_file: str = ".stackagent.env",
        resolver: ProjectFileResolver | None = None,
    ) -> None:
        super().__init__(docker_bin)
        self.env_file = env_file
        self.resolver = resolver or ProjectFileResolver()

    def build_args(self, directory: Path, *action: str, with_env_file: bool = True) -> list[str]:
        """Return the ``compose`` argument vector for *action* in *directory*."""
        files = self.resolver.detect(directory)
        args = ["compose"]
        if with_env_file and (directory / self.env_file).is_file():
            args.extend(["--env-file", self.env_file])
        args.extend(file_args(files))
        args.extend(action)
        return args

    def up(self, directory: Path) -> subprocess.CompletedProcess[str]:
        """Run ``docker compose up -d``."""
        return self._compose(directory, "up", "-d")

    def down(self, directory: Path) -> subprocess.CompletedProcess[str]:
        """Run ``docker compose down --remove-orphans``."""
        return self._compose(directory, "down", "--remove-orphans")

    def restart(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._compose(directory, "restart")

    def pull(self, directory: Path) -> subprocess.CompletedProcess[str]:
        # The pull step only needs images, never variable values.
        return self._compose(directory, "pull", with_env_file=False)

    def logs(
        self,
        directory: Path,
        *,
        tail: int | None = None,
        since: str | None = None,
    ) -> str:
        """Return the combined log output of every service in the project."""
        action = ["logs", "--no-color", "--timestamps"]
        if tail is not None and tail > 0:
            action.extend(["--tail", str(tail)])
        if since:
            action.extend(["--since", since])
        return self._compose(directory, *action).stdout or ""

    def _compose(
        self,
        directory: Path,
        *action: str,
        with_env_file: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args = self.build_args(directory, *action, with_env_file=with_env_file)
        return self._run_command(
            args,
            cwd=directory,
            error_prefix=f"docker compose {action[0]}",
        )


__all__ = ["COMPOSE_PROJECT_LABEL", "ComposeDriver"]
