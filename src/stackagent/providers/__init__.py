"""Orchestrator drivers and container inspection for stackagent."""
from __future__ import annotations

from ..config import ORCHESTRATOR_SWARM, AgentConfig
from .base import DockerCLI, OrchestratorDriver, project_name
from .compose import COMPOSE_PROJECT_LABEL, ComposeDriver
from .inspector import DockerInspector
from .project_files import BASE_FILES, OVERRIDE_FILE, ProjectFileResolver, file_args
from .swarm import STACK_NAMESPACE_LABEL, SwarmDriver


def create_driver(config: AgentConfig) -> OrchestratorDriver:
    """Build the driver selected by ``config.orchestrator``."""
    compose = config.compose
    resolver = ProjectFileResolver(
        extensions=compose.extension_files,
        strict=compose.strict_base_file,
    )
    if config.orchestrator == ORCHESTRATOR_SWARM:
        return SwarmDriver(
            docker_bin=compose.docker_bin,
            env_file=compose.env_file,
            resolver=resolver,
        )
    return ComposeDriver(
        docker_bin=compose.docker_bin,
        env_file=compose.env_file,
        resolver=resolver,
    )


__all__ = [
    "BASE_FILES",
    "COMPOSE_PROJECT_LABEL",
    "ComposeDriver",
    "DockerCLI",
    "DockerInspector",
    "OVERRIDE_FILE",
    "OrchestratorDriver",
    "ProjectFileResolver",
    "STACK_NAMESPACE_LABEL",
    "SwarmDriver",
    "create_driver",
    "file_args",
    "project_name",
]
