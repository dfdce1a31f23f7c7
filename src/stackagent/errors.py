"""Error types raised by the deployment engine.

Lower layers raise the specific subclasses below with enough context (paths,
application IDs) to diagnose a failure without re-deriving state. The
lifecycle controller wraps anything fatal in :class:`LifecycleError` so the
caller always sees which action failed for which application.
"""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from .exit_codes import ExitCode


class StackAgentError(RuntimeError):
    """Base class for all stackagent failures."""

    exit_code: ExitCode = ExitCode.ENVIRONMENT


class ConfigUnreadableError(StackAgentError):
    """Raised when an application ``config.json`` is missing or malformed."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, path: Path, reason: str) -> None:
        """Record the offending *path* and a human readable *reason*."""
        super().__init__(f"Cannot read application config {path}: {reason}")
        self.path = path
        self.reason = reason


class NoRevisionsError(StackAgentError):
    """Raised when an application has no usable revision directories."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, app_id: str, root: Path) -> None:
        """Record the application and the directory that was searched."""
        super().__init__(f"Application '{app_id}' has no revisions under {root}")
        self.app_id = app_id
        self.root = root


class RevisionNotFoundError(StackAgentError):
    """Raised when an explicitly requested revision does not exist."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, app_id: str, revision: int) -> None:
        """Record the application and the missing revision number."""
        super().__init__(f"Revision {revision} not found for application '{app_id}'")
        self.app_id = app_id
        self.revision = revision


class NoProjectFileError(StackAgentError):
    """Raised when a deployment directory holds no base project file."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, directory: Path, candidates: Sequence[str]) -> None:
        """Record the directory and the base file names that were checked."""
        joined = " nor ".join(candidates)
        super().__init__(f"Neither {joined} found in {directory}")
        self.directory = directory


class AmbiguousProjectFileError(StackAgentError):
    """Raised when more than one base project file exists in strict mode."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, directory: Path, found: Sequence[str]) -> None:
        """Record the directory and the conflicting base files."""
        super().__init__(
            f"Multiple base project files found in {directory}: {', '.join(found)}"
        )
        self.directory = directory
        self.found = tuple(found)


class PathTraversalError(StackAgentError, ValueError):
    """Raised when a declared filename would escape the deployment root."""

    exit_code = ExitCode.VALIDATION


class InvalidVariableNameError(StackAgentError, ValueError):
    """Raised when a variable name cannot be written to the env file."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, name: str) -> None:
        """Record the rejected *name*."""
        super().__init__(f"Invalid environment variable name: {name!r}")
        self.name = name


class DriverError(StackAgentError):
    """Raised when the orchestrator CLI exits with a non-zero status."""

    exit_code = ExitCode.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        output: str = "",
    ) -> None:
        """Capture the command line, exit status and combined output."""
        super().__init__(message)
        self.command = list(command)
        self.returncode = returncode
        self.output = output


class AppAlreadyExistsError(StackAgentError):
    """Raised when a rename target is already taken."""

    exit_code = ExitCode.VALIDATION


class DeploymentMissingError(StackAgentError):
    """Raised when an operation needs a deployment directory that is absent."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, app_id: str, directory: Path) -> None:
        """Record the application and the expected deployment directory."""
        super().__init__(f"Deployment directory {directory} for '{app_id}' does not exist")
        self.app_id = app_id
        self.directory = directory


class LifecycleError(StackAgentError):
    """Wraps a fatal failure with the lifecycle action and application ID."""

    def __init__(self, action: str, app_id: str, cause: BaseException) -> None:
        """Build the message from *action*, *app_id* and the underlying *cause*."""
        super().__init__(f"{action} failed for application '{app_id}': {cause}")
        self.action = action
        self.app_id = app_id
        self.cause = cause
        if isinstance(cause, StackAgentError):
            self.exit_code = cause.exit_code


__all__ = [
    "AmbiguousProjectFileError",
    "AppAlreadyExistsError",
    "ConfigUnreadableError",
    "DeploymentMissingError",
    "DriverError",
    "InvalidVariableNameError",
    "LifecycleError",
    "NoProjectFileError",
    "NoRevisionsError",
    "PathTraversalError",
    "RevisionNotFoundError",
    "StackAgentError",
]
