"""Differential removal of files dropped between two rendered revisions."""
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from .errors import PathTraversalError
from .models import AppConfig

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupReport:
    """Files removed and entries skipped by :func:`remove_stale_files`."""

    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    pruned_dirs: list[str] = field(default_factory=list)


def sanitize_relative_path(name: str) -> str:
    """Normalise *name* into a path that stays under the deployment root.

    Leading separators are stripped. Empty names, ``.``, absolute paths and
    any ``..`` segment raise :class:`PathTraversalError`. Dots inside a
    segment (``nginx..conf``) are fine.
    """
    candidate = name.replace("\\", "/")
    clean = posixpath.normpath(candidate) if candidate else ""
    clean = clean.lstrip("/")
    if clean in ("", "."):
        raise PathTraversalError(f"Invalid empty filename {name!r}")
    path = PurePosixPath(clean)
    if path.is_absolute() or ".." in path.parts or "\x00" in clean:
        raise PathTraversalError(f"Invalid filename {name!r}: potential path traversal")
    return clean


def ensure_path_component(value: str, kind: str = "name") -> str:
    """Return *value* if it is usable as a single directory entry.

    Separators, NUL, ``.`` and ``..`` are rejected with
    :class:`PathTraversalError`.
    """
    if (
        not value
        or value in (".", "..")
        or "/" in value
        or "\\" in value
        or "\x00" in value
    ):
        raise PathTraversalError(f"Invalid {kind} {value!r}")
    return value


def _prune_empty_parents(start: Path, root: Path, report: CleanupReport) -> None:
    directory = start
    while directory != root and root in directory.parents:
        try:
            if any(directory.iterdir()):
                return
            directory.rmdir()
        except OSError:
            return
        report.pruned_dirs.append(str(directory.relative_to(root)))
        directory = directory.parent


def remove_stale_files(
    deploy_dir: Path,
    old_config: AppConfig | None,
    new_config: AppConfig | None,
) -> CleanupReport:
    """Delete files declared by *old_config* that *new_config* no longer declares.

    Unsafe filenames are skipped with a warning. Files already missing are
    ignored. Directories emptied by a deletion are removed upwards, stopping
    at *deploy_dir*, which is never removed.
    """
    report = CleanupReport()
    if old_config is None:
        return report

    keep = new_config.filenames() if new_config is not None else set()
    root = Path(deploy_dir)
    for entry in old_config.files:
        if entry.filename in keep:
            continue
        try:
            relative = sanitize_relative_path(entry.filename)
        except PathTraversalError as exc:
            LOGGER.warning("Skipping invalid filename during cleanup: %s", exc)
            report.skipped.append(entry.filename)
            continue

        target = root / relative
        try:
            target.unlink()
        except FileNotFoundError:
            continue
        LOGGER.debug("Removed previously deployed file %s", relative)
        report.removed.append(relative)
        _prune_empty_parents(target.parent, root, report)
    return report


__all__ = [
    "CleanupReport",
    "ensure_path_component",
    "remove_stale_files",
    "sanitize_relative_path",
]
