"""Application lifecycle transitions.

:class:`AppLifecycle` is the entry point for deploying and operating
applications. It sequences the revision store, renderer, orchestrator driver
and status aggregator, and serialises mutations of the same application with
:class:`~stackagent.locking.LockManager` locks.

Every public transition wraps a fatal failure in
:class:`~stackagent.errors.LifecycleError`, which names the action and the
application. Two failures are not fatal: the stop performed by
:meth:`AppLifecycle.delete` and unsafe filenames met during cleanup.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from .cleanup import ensure_path_component
from .errors import (
    AppAlreadyExistsError,
    DeploymentMissingError,
    LifecycleError,
    StackAgentError,
)
from .locking import LockManager
from .models import AppStatus
from .providers.base import OrchestratorDriver
from .rendering import TemplateRenderer
from .revisions import RevisionStore
from .state import StateRegistry, StateRegistryError
from .status import StatusAggregator

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class StepRecord:
    """One step performed during a transition."""

    name: str
    status: str = "success"
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass(slots=True)
class LifecycleResult:
    """Outcome of a lifecycle transition."""

    action: str
    app_id: str
    app_name: str = ""
    revision: int | None = None
    changed: bool = False
    lock_wait_ms: int = 0
    steps: list[StepRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def step(self, name: str, status: str = "success", detail: str = "") -> None:
        self.steps.append(StepRecord(name=name, status=status, detail=detail))

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "app_id": self.app_id,
            "app_name": self.app_name,
            "revision": self.revision,
            "changed": self.changed,
            "lock_wait_ms": self.lock_wait_ms,
            "steps": [step.to_dict() for step in self.steps],
            "warnings": list(self.warnings),
        }


@dataclass(slots=True)
class BestEffort:
    """Result of a step whose failure is logged and then discarded."""

    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _output(result: subprocess.CompletedProcess[str] | None) -> str:
    if result is None:
        return ""
    return (result.stdout or "").strip()


class AppLifecycle:
    """Deploy, operate and remove applications on this host."""

    def __init__(
        self,
        *,
        store: RevisionStore,
        renderer: TemplateRenderer,
        driver: OrchestratorDriver,
        status: StatusAggregator,
        apps_path: Path,
        locks: LockManager | None = None,
        registry: StateRegistry | None = None,
        keep_revisions: int = 5,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.driver = driver
        self.status_aggregator = status
        self.apps_path = Path(apps_path)
        self.locks = locks
        self.registry = registry
        self.keep_revisions = keep_revisions

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------
    def deployment_dir(self, name: str) -> Path:
        return self.apps_path / ensure_path_component(name, "application name")

    def deployed_name(self, app_id: str) -> str:
        return self.store.deployed_name(app_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def deploy(self, app_id: str, *, revision: int | None = None) -> LifecycleResult:
        """Render the requested (default: latest) revision and bring it up."""
        return self._transition("deploy", app_id, lambda result: self._deploy(result, revision))

    def start(self, app_id: str) -> LifecycleResult:
        """Bring an existing deployment up, deploying it on first start."""
        return self._transition("start", app_id, self._start)

    def stop(self, app_id: str) -> LifecycleResult:
        """Bring the deployment down. A missing deployment is already stopped."""
        return self._transition("stop", app_id, self._stop)

    def restart(self, app_id: str) -> LifecycleResult:
        """Restart in place, deploying first when nothing is on disk."""
        return self._transition("restart", app_id, self._restart)

    def update(self, app_id: str) -> LifecycleResult:
        """Pull fresh images and bring the existing deployment up."""
        return self._transition("update", app_id, self._update)

    def redeploy(self, app_id: str, *, revision: int | None = None) -> LifecycleResult:
        """Stop the application, then deploy it again."""

        def _run(result: LifecycleResult) -> None:
            self._stop(result)
            self._deploy(result, revision)

        return self._transition("redeploy", app_id, _run)

    def rename(self, app_id: str, new_name: str) -> LifecycleResult:
        """Move the deployment to *new_name*, restarting it only if it was running."""
        return self._transition(
            "rename",
            app_id,
            lambda result: self._rename(result, new_name),
            include_global=True,
        )

    def delete(self, app_id: str, *, purge: bool = False) -> LifecycleResult:
        """Remove the deployment. A failing stop never blocks the deletion."""
        return self._transition("delete", app_id, lambda result: self._delete(result, purge))

    def prune(self, app_id: str, *, keep: int | None = None) -> LifecycleResult:
        """Delete the oldest revisions beyond *keep* (default from configuration)."""

        def _run(result: LifecycleResult) -> None:
            removed = self.store.prune(app_id, keep or self.keep_revisions)
            result.changed = bool(removed)
            result.step(
                "revisions.prune",
                status="success" if removed else "skipped",
                detail=", ".join(str(number) for number in removed),
            )

        return self._transition("prune", app_id, _run, record=False)

    # ------------------------------------------------------------------
    # Queries (no locks)
    # ------------------------------------------------------------------
    def status(self, app_id: str) -> AppStatus:
        """Return the live status of *app_id*."""
        try:
            return self.status_aggregator.app_status(app_id, self.deployed_name(app_id))
        except StackAgentError as exc:
            raise LifecycleError("status", app_id, exc) from exc

    def status_all(self) -> list[AppStatus]:
        return self.status_aggregator.status_all()

    def logs(self, app_id: str, *, tail: int | None = None, since: str | None = None) -> str:
        """Return the orchestrator log output for the deployment of *app_id*."""
        try:
            directory = self.deployment_dir(self.deployed_name(app_id))
            if not directory.is_dir():
                raise DeploymentMissingError(app_id, directory)
            return self.driver.logs(directory, tail=tail, since=since)
        except StackAgentError as exc:
            raise LifecycleError("logs", app_id, exc) from exc

    def revisions(self, app_id: str) -> list[int]:
        return self.store.list_revisions(app_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _transition(
        self,
        action: str,
        app_id: str,
        body: Callable[[LifecycleResult], None],
        *,
        include_global: bool = False,
        record: bool = True,
    ) -> LifecycleResult:
        result = LifecycleResult(action=action, app_id=app_id)
        try:
            with self._locked(app_id, include_global) as wait_ms:
                result.lock_wait_ms = wait_ms
                self.apps_path.mkdir(parents=True, exist_ok=True)
                body(result)
        except (StackAgentError, OSError) as exc:
            LOGGER.error("%s failed for %s: %s", action, app_id, exc)
            if isinstance(exc, LifecycleError):
                raise
            raise LifecycleError(action, app_id, exc) from exc
        if record and self.registry is not None:
            try:
                self._record(result)
            except (StateRegistryError, OSError) as exc:
                LOGGER.warning("Could not update deployment registry for %s: %s", app_id, exc)
                result.warnings.append(f"Registry not updated: {exc}")
        LOGGER.info("%s completed for %s (%s)", action, app_id, result.app_name)
        return result

    @contextmanager
    def _locked(self, app_id: str, include_global: bool) -> Iterator[int]:
        if self.locks is None:
            yield 0
            return
        with self.locks.mutate_apps([app_id], include_global=include_global) as bundle:
            yield bundle.wait_ms

    def _record(self, result: LifecycleResult) -> None:
        registry = self.registry
        if registry is None:
            return
        if result.action == "delete":
            registry.remove_deployment(result.app_id)
            return
        status = "stopped" if result.action == "stop" else "running"
        if result.action == "rename" and not any(
            step.name == "driver.up" and step.status == "success" for step in result.steps
        ):
            status = "stopped"
        registry.record_deployment(
            result.app_id,
            name=result.app_name,
            action=result.action,
            revision=result.revision,
            status=status,
        )

    def _run_driver(
        self,
        result: LifecycleResult,
        step: str,
        operation: Callable[[Path], subprocess.CompletedProcess[str]],
        directory: Path,
    ) -> None:
        completed = operation(directory)
        result.changed = True
        result.step(step, detail=_output(completed))

    def _deploy(self, result: LifecycleResult, revision: int | None) -> None:
        app_id = result.app_id
        number = self.store.resolve(app_id, revision)
        config = self.store.load_config(app_id, number)
        target = self.deployment_dir(config.name)
        result.revision = number
        result.app_name = config.name

        previous = self.store.read_current_config(app_id)
        if previous is not None and previous.name != config.name:
            self._relocate(result, self.deployment_dir(previous.name), target, previous.name)

        if target.is_dir():
            current = self.status_aggregator.app_status(app_id, config.name)
            if current.is_running:
                self._run_driver(result, "driver.down", self.driver.down, target)
            else:
                result.step("driver.down", status="skipped", detail=current.status_code.label)

        rendered = self.renderer.render(app_id, self.store.revision_dir(app_id, number), target)
        result.changed = True
        result.step(
            "render",
            detail=f"revision {number}: {len(rendered.rendered)} files, "
            f"{len(rendered.cleanup.removed)} removed",
        )
        for skipped in rendered.cleanup.skipped:
            result.warnings.append(f"Skipped unsafe filename during cleanup: {skipped}")
        self._run_driver(result, "driver.up", self.driver.up, target)

    def _relocate(self, result: LifecycleResult, source: Path, target: Path, old: str) -> None:
        """Carry a deployment over to a name changed by a newer revision."""
        if not source.is_dir():
            return
        self._run_driver(result, "driver.down", self.driver.down, source)
        if target.exists():
            result.warnings.append(f"Left previous deployment directory {source} in place")
            return
        source.rename(target)
        result.step("deployment.move", detail=f"{old} -> {target.name}")

    def _start(self, result: LifecycleResult) -> None:
        name = self.deployed_name(result.app_id)
        result.app_name = name
        directory = self.deployment_dir(name)
        if not directory.is_dir():
            result.step("deployment.missing", status="skipped", detail="deploying first")
            self._deploy(result, None)
            return
        self._run_driver(result, "driver.up", self.driver.up, directory)

    def _stop(self, result: LifecycleResult) -> None:
        name = self.deployed_name(result.app_id)
        result.app_name = name
        directory = self.deployment_dir(name)
        if not directory.is_dir():
            LOGGER.warning("Deployment directory %s for %s is missing", directory, result.app_id)
            result.step("driver.down", status="skipped", detail="not deployed")
            return
        self._run_driver(result, "driver.down", self.driver.down, directory)

    def _restart(self, result: LifecycleResult) -> None:
        name = self.deployed_name(result.app_id)
        result.app_name = name
        directory = self.deployment_dir(name)
        if not directory.is_dir():
            result.step("deployment.missing", status="skipped", detail="deploying first")
            self._deploy(result, None)
            return
        self._run_driver(result, "driver.restart", self.driver.restart, directory)

    def _update(self, result: LifecycleResult) -> None:
        name = self.deployed_name(result.app_id)
        result.app_name = name
        directory = self.deployment_dir(name)
        if not directory.is_dir():
            raise DeploymentMissingError(result.app_id, directory)
        self._run_driver(result, "driver.pull", self.driver.pull, directory)
        self._run_driver(result, "driver.up", self.driver.up, directory)

    def _rename(self, result: LifecycleResult, new_name: str) -> None:
        app_id = result.app_id
        ensure_path_component(new_name, "application name")
        old_name = self.deployed_name(app_id)
        result.app_name = old_name
        if old_name == new_name:
            result.step("rename", status="skipped", detail="name unchanged")
            return

        owner = self.store.name_in_use(new_name, exclude=app_id)
        if owner is not None:
            raise AppAlreadyExistsError(
                f"Application name '{new_name}' is already used by application '{owner}'"
            )

        old_dir = self.deployment_dir(old_name)
        new_dir = self.deployment_dir(new_name)
        if old_dir.is_dir():
            if new_dir.exists():
                raise AppAlreadyExistsError(f"Target deployment directory {new_dir} already exists")
            was_running = self.status_aggregator.app_status(app_id, old_name).is_running
            self._run_driver(result, "driver.down", self.driver.down, old_dir)
            old_dir.rename(new_dir)
            result.step("deployment.move", detail=f"{old_name} -> {new_name}")
            if was_running:
                self._run_driver(result, "driver.up", self.driver.up, new_dir)
            else:
                result.step("driver.up", status="skipped", detail="was not running")
        else:
            result.step("deployment.move", status="skipped", detail="not deployed")

        self._persist_name(result, new_name)
        result.app_name = new_name
        result.changed = True

    def _persist_name(self, result: LifecycleResult, new_name: str) -> None:
        app_id = result.app_id
        renamed = self.store.rename_latest(app_id, new_name)
        result.revision = self.store.resolve_latest(app_id)
        result.step("config.rename", detail=f"revision {result.revision}")
        current = self.store.read_current_config(app_id)
        if current is not None:
            self.store.save_current_config(app_id, current.renamed(renamed.name))
            result.step("current_config.rename")

    def _delete(self, result: LifecycleResult, purge: bool) -> None:
        app_id = result.app_id
        stopped = self._best_effort(result, "driver.down", lambda: self._stop(result))
        if not stopped.ok:
            result.warnings.append(f"Stop before delete failed: {stopped.error}")

        name = result.app_name
        if name:
            directory = self.deployment_dir(name)
            if directory.is_dir():
                shutil.rmtree(directory)
                result.changed = True
                result.step("deployment.remove", detail=str(directory))
        if self.store.remove_current_config(app_id):
            result.changed = True
            result.step("current_config.remove")
        if purge and self.store.purge(app_id):
            result.changed = True
            result.step("revisions.purge")

    def _best_effort(
        self, result: LifecycleResult, step: str, operation: Callable[[], None]
    ) -> BestEffort:
        try:
            operation()
        except (StackAgentError, OSError) as exc:
            LOGGER.warning("%s failed for %s and was ignored: %s", step, result.app_id, exc)
            result.step(step, status="failed", detail=str(exc))
            return BestEffort(error=exc)
        return BestEffort()


__all__ = ["AppLifecycle", "BestEffort", "LifecycleResult", "StepRecord"]
