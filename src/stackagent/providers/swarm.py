"""``docker stack`` driver for hosts running in swarm mode."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path

from ..envfile import read_env_file
from .base import DockerCLI, project_name
from .project_files import ProjectFileResolver

STACK_NAMESPACE_LABEL = "com.docker.stack.namespace"


class SwarmDriver(DockerCLI):
    """Deploy rendered projects as swarm stacks named after their directory.

    ``docker stack deploy`` does not accept an env file, so the values of the
    rendered env file are exported into the command's environment for
    interpolation instead.
    """

    project_label = STACK_NAMESPACE_LABEL

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

    def stack_name(self, directory: Path) -> str:
        return project_name(directory.name)

    def stack_files(self, directory: Path) -> list[str]:
        """Return every project file; stacks have no implicit discovery."""
        return self.resolver.detect(directory) or [self.resolver.base_file(directory)]

    def up(self, directory: Path) -> subprocess.CompletedProcess[str]:
        args = ["stack", "deploy", "--prune"]
        for name in self.stack_files(directory):
            args.extend(["-c", name])
        args.append(self.stack_name(directory))
        return self._run_command(
            args,
            cwd=directory,
            error_prefix="docker stack deploy",
            env=self._environment(directory),
        )

    def down(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            ["stack", "rm", self.stack_name(directory)],
            cwd=directory,
            error_prefix="docker stack rm",
        )

    def restart(self, directory: Path) -> subprocess.CompletedProcess[str]:
        """Force a rolling restart of every service in the stack."""
        result: subprocess.CompletedProcess[str] | None = None
        for service in self.services(directory):
            result = self._run_command(
                ["service", "update", "--force", "--detach", service],
                cwd=directory,
                error_prefix="docker service update",
            )
        if result is None:
            return subprocess.CompletedProcess([self.docker_bin], returncode=0, stdout="")
        return result

    def pull(self, directory: Path) -> subprocess.CompletedProcess[str]:
        args = ["compose"]
        for name in self.stack_files(directory):
            args.extend(["-f", name])
        args.append("pull")
        return self._run_command(args, cwd=directory, error_prefix="docker compose pull")

    def services(self, directory: Path) -> list[str]:
        """Return the service names of the stack deployed from *directory*."""
        result = self._run_command(
            ["stack", "services", "--format", "{{.Name}}", self.stack_name(directory)],
            cwd=directory,
            error_prefix="docker stack services",
        )
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def logs(
        self,
        directory: Path,
        *,
        tail: int | None = None,
        since: str | None = None,
    ) -> str:
        chunks: list[str] = []
        for service in self.services(directory):
            args = ["service", "logs", "--no-task-ids", "--timestamps"]
            if tail is not None and tail > 0:
                args.extend(["--tail", str(tail)])
            if since:
                args.extend(["--since", since])
            args.append(service)
            result = self._run_command(args, cwd=directory, error_prefix="docker service logs")
            chunks.append(result.stdout or "")
        return "".join(chunks)

    def _environment(self, directory: Path) -> dict[str, str]:
        env = dict(os.environ)
        env.update(read_env_file(directory / self.env_file))
        return env


__all__ = ["STACK_NAMESPACE_LABEL", "SwarmDriver"]
