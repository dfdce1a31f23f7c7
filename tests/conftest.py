"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from pathlib import Path

import pytest

from stackagent.models import Container


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


RevisionWriter = Callable[..., Path]


def write_revision(
    templates_root: Path,
    app_id: str,
    number: int,
    *,
    name: str,
    files: Mapping[str, str] | None = None,
    declared: Sequence[Mapping[str, str]] | None = None,
    values: Mapping[str, object] | None = None,
    variables: Sequence[Mapping[str, str]] = (),
) -> Path:
    """Create ``{templates_root}/{app_id}/{number}`` with config, templates and values.

    *files* maps paths under ``files/`` to their content. When *declared* is
    omitted every template is declared with its path as both id and filename.
    """
    files = dict(files or {})
    revision_dir = templates_root / app_id / str(number)
    files_dir = revision_dir / "files"
    files_dir.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        path = files_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    if declared is None:
        declared = [{"id": key, "filename": key, "origin": "user"} for key in files]
    config = {
        "id": app_id,
        "name": name,
        "files": [dict(entry) for entry in declared],
        "variables": [dict(entry) for entry in variables],
        "extensionValues": [],
    }
    (revision_dir / "config.json").write_text(json.dumps(config), encoding="utf-8")

    if values is not None:
        vars_dir = revision_dir / "vars"
        vars_dir.mkdir(parents=True, exist_ok=True)
        (vars_dir / "values.json").write_text(json.dumps(dict(values)), encoding="utf-8")
    return revision_dir


@pytest.fixture
def revision_writer(tmp_path: Path) -> RevisionWriter:
    """Return a helper writing revisions under ``tmp_path/templates``."""
    root = tmp_path / "templates"

    def _write(app_id: str, number: int, **kwargs: object) -> Path:
        return write_revision(root, app_id, number, **kwargs)  # type: ignore[arg-type]

    return _write


class FakeDriver:
    """Records orchestrator calls instead of running them."""

    project_label = "com.docker.compose.project"

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}

    def _call(self, action: str, directory: Path) -> subprocess.CompletedProcess[str]:
        self.calls.append((action, directory.name))
        if action in self.fail_on:
            raise self.fail_on[action]
        return subprocess.CompletedProcess([action], returncode=0, stdout=f"{action} ok")

    def up(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._call("up", directory)

    def down(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._call("down", directory)

    def restart(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._call("restart", directory)

    def pull(self, directory: Path) -> subprocess.CompletedProcess[str]:
        return self._call("pull", directory)

    def logs(
        self,
        directory: Path,
        *,
        tail: int | None = None,
        since: str | None = None,
    ) -> str:
        self.calls.append(("logs", directory.name))
        return f"logs tail={tail} since={since}\n"


class FakeInspector:
    """Returns canned containers keyed by project name."""

    def __init__(self, containers: Mapping[str, Sequence[Container]] | None = None) -> None:
        self.containers: dict[str, list[Container]] = {
            key: list(value) for key, value in (containers or {}).items()
        }
        self.queries: list[tuple[str, str | None]] = []

    def list_containers(self, label: str, value: str | None = None) -> list[Container]:
        self.queries.append((label, value))
        if value is not None:
            return list(self.containers.get(value, []))
        result: list[Container] = []
        for project, items in self.containers.items():
            for item in items:
                result.append(item if item.project else _with_project(item, project))
        return result


def _with_project(container: Container, project: str) -> Container:
    return replace(container, project=project)


def running(name: str = "web") -> Container:
    return Container(id=f"id-{name}", name=name, raw_state="running", status_text="Up 1 minute")


def exited(name: str = "web", code: int = 0) -> Container:
    return Container(
        id=f"id-{name}",
        name=name,
        raw_state="exited",
        exit_code=code,
        status_text=f"Exited ({code}) 1 minute ago",
    )
