"""Container state normalisation and application-level status reduction."""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

from .errors import ConfigUnreadableError, NoRevisionsError
from .models import AppStatus, Container, ContainerStatusCode
from .providers.base import project_name
from .providers.inspector import DockerInspector
from .revisions import RevisionStore

LOGGER = logging.getLogger(__name__)

_STATE_MAP = {
    "running": ContainerStatusCode.ACTIVE,
    "exited": ContainerStatusCode.STOPPED,
    "stopped": ContainerStatusCode.STOPPED,
    "restarting": ContainerStatusCode.RESTARTING,
    "paused": ContainerStatusCode.IDLE,
    "dead": ContainerStatusCode.PROBLEMATIC,
    "oomkilled": ContainerStatusCode.PROBLEMATIC,
}


def map_state(raw_state: str) -> ContainerStatusCode:
    """Map a raw container state onto :class:`ContainerStatusCode`."""
    return _STATE_MAP.get(raw_state.strip().lower(), ContainerStatusCode.UNKNOWN)


def classify(container: Container) -> Container:
    """Return *container* with its status code (and problem description) filled in."""
    code = map_state(container.raw_state)
    error = ""
    if code is ContainerStatusCode.PROBLEMATIC:
        error = f"Container in problematic state: {container.status_text or container.raw_state}"
    elif code is ContainerStatusCode.RESTARTING and container.exit_code != 0:
        error = f"Container restarting after exit code {container.exit_code}"
    return replace(container, status_code=code, error=error)


def reduce_statuses(
    statuses: Iterable[tuple[ContainerStatusCode, int]],
    *,
    deployment_exists: bool,
) -> ContainerStatusCode:
    """Reduce ``(status, exit_code)`` pairs to one application status.

    Precedence, first match wins:

    * no containers: ``STOPPED`` when the deployment directory exists,
      otherwise ``UNKNOWN``;
    * any problematic container, or one restarting with a non-zero exit
      code: ``PROBLEMATIC``;
    * any restarting container: ``RESTARTING``;
    * only active containers: ``ACTIVE``;
    * only stopped containers: ``STOPPED``;
    * any idle container, or active mixed with stopped: ``IDLE``;
    * otherwise ``UNKNOWN``. Unknown container states are not counted.
    """
    counts: Counter[ContainerStatusCode] = Counter()
    total = 0
    for code, exit_code in statuses:
        total += 1
        if code is ContainerStatusCode.RESTARTING and exit_code != 0:
            code = ContainerStatusCode.PROBLEMATIC
        counts[code] += 1

    if total == 0:
        return ContainerStatusCode.STOPPED if deployment_exists else ContainerStatusCode.UNKNOWN

    active = counts[ContainerStatusCode.ACTIVE]
    idle = counts[ContainerStatusCode.IDLE]
    stopped = counts[ContainerStatusCode.STOPPED]

    if counts[ContainerStatusCode.PROBLEMATIC]:
        return ContainerStatusCode.PROBLEMATIC
    if counts[ContainerStatusCode.RESTARTING]:
        return ContainerStatusCode.RESTARTING
    if active and not stopped and not idle:
        return ContainerStatusCode.ACTIVE
    if stopped and not active and not idle:
        return ContainerStatusCode.STOPPED
    if idle or (active and stopped):
        return ContainerStatusCode.IDLE
    return ContainerStatusCode.UNKNOWN


class StatusAggregator:
    """Query live containers and derive application statuses. Never cached."""

    def __init__(
        self,
        inspector: DockerInspector,
        store: RevisionStore,
        apps_path: Path,
        *,
        project_label: str,
    ) -> None:
        self.inspector = inspector
        self.store = store
        self.apps_path = Path(apps_path)
        self.project_label = project_label

    def app_status(self, app_id: str, app_name: str | None = None) -> AppStatus:
        """Return the status of *app_id*, resolving its name when not supplied."""
        name = app_name or self.store.deployed_name(app_id)
        containers = self.inspector.list_containers(self.project_label, project_name(name))
        return self._build(app_id, name, containers)

    def status_all(self) -> list[AppStatus]:
        """Return the status of every known application and every labelled project."""
        known: dict[str, tuple[str, str]] = {}
        for app_id in self.store.app_ids():
            try:
                name = self.store.deployed_name(app_id)
            except (NoRevisionsError, ConfigUnreadableError) as exc:
                LOGGER.warning("Skipping %s in status listing: %s", app_id, exc)
                continue
            known[project_name(name)] = (app_id, name)

        grouped: dict[str, list[Container]] = {project: [] for project in known}
        for container in self.inspector.list_containers(self.project_label):
            grouped.setdefault(container.project, []).append(container)

        statuses: list[AppStatus] = []
        for project in sorted(grouped):
            app_id, name = known.get(project, (project, project))
            statuses.append(self._build(app_id, name, grouped[project]))
        return statuses

    def _build(self, app_id: str, name: str, containers: Iterable[Container]) -> AppStatus:
        classified = tuple(classify(container) for container in containers)
        code = reduce_statuses(
            ((container.status_code, container.exit_code) for container in classified),
            deployment_exists=(self.apps_path / name).is_dir(),
        )
        LOGGER.debug("Status of %s: %s from %d containers", app_id, code.label, len(classified))
        return AppStatus(app_id=app_id, app_name=name, status_code=code, containers=classified)


__all__ = ["StatusAggregator", "classify", "map_state", "reduce_statuses"]
