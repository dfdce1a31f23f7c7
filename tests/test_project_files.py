"""Project file detection tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from stackagent.errors import AmbiguousProjectFileError, NoProjectFileError
from stackagent.providers.project_files import ProjectFileResolver, file_args


def _touch(directory: Path, *names: str) -> None:
    for name in names:
        (directory / name).write_text("services: {}\n", encoding="utf-8")


def test_base_file_only_uses_implicit_discovery(tmp_path: Path) -> None:
    """A lone base file needs no explicit file arguments."""
    _touch(tmp_path, "docker-compose.yml")

    assert ProjectFileResolver().detect(tmp_path) == []


def test_extension_and_override_order(tmp_path: Path) -> None:
    """Base first, then extensions in declared order, then the override."""
    _touch(tmp_path, "compose.yml", "compose.override.yml", "compose.expose.yml")

    resolver = ProjectFileResolver(extensions=("expose",))

    assert resolver.detect(tmp_path) == [
        "compose.yml",
        "compose.expose.yml",
        "compose.override.yml",
    ]


def test_only_known_extensions_are_used(tmp_path: Path) -> None:
    """Unrecognised overlay files are ignored."""
    _touch(tmp_path, "docker-compose.yml", "compose.monitoring.yml", "compose.expose.yml")

    assert ProjectFileResolver(extensions=("expose",)).detect(tmp_path) == [
        "docker-compose.yml",
        "compose.expose.yml",
    ]
    assert ProjectFileResolver(extensions=("monitoring", "expose")).detect(tmp_path) == [
        "docker-compose.yml",
        "compose.monitoring.yml",
        "compose.expose.yml",
    ]


def test_missing_base_file_raises(tmp_path: Path) -> None:
    """Overlays without a base file are an error."""
    _touch(tmp_path, "compose.expose.yml")

    with pytest.raises(NoProjectFileError):
        ProjectFileResolver().detect(tmp_path)


def test_two_base_files(tmp_path: Path) -> None:
    """Strict mode refuses two base files, lenient mode prefers docker-compose.yml."""
    _touch(tmp_path, "docker-compose.yml", "compose.yml", "compose.override.yml")

    with pytest.raises(AmbiguousProjectFileError):
        ProjectFileResolver(strict=True).detect(tmp_path)

    assert ProjectFileResolver(strict=False).detect(tmp_path) == [
        "docker-compose.yml",
        "compose.override.yml",
    ]


def test_file_args() -> None:
    """File names become repeated -f flags."""
    assert file_args(["compose.yml", "compose.expose.yml"]) == [
        "-f",
        "compose.yml",
        "-f",
        "compose.expose.yml",
    ]
    assert file_args([]) == []
