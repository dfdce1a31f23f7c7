"""Versioned application templates stored on disk.

Layout under ``apps_templates_path``::

    {app_id}/{N}/config.json
    {app_id}/{N}/vars/values.json
    {app_id}/{N}/files/**
    {app_id}/current.config.json

Revisions are numbered from 1 and never modified in place. Only numeric
directories that contain a ``config.json`` count as revisions. Callers must
re-resolve the latest revision instead of caching it since a new one may be
saved at any time.
"""
from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from .cleanup import ensure_path_component
from .errors import ConfigUnreadableError, NoRevisionsError, RevisionNotFoundError
from .models import AppConfig, AppConfigError
from .state import atomic_write_text

LOGGER = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
CURRENT_CONFIG_FILE = "current.config.json"
FILES_DIR = "files"
VARS_DIR = "vars"


def read_app_config(path: Path) -> AppConfig:
    """Read and validate an application config from *path*."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigUnreadableError(path, "file does not exist") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigUnreadableError(path, str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise ConfigUnreadableError(path, f"invalid JSON: {exc}") from exc
    try:
        return AppConfig.from_dict(payload)
    except AppConfigError as exc:
        raise ConfigUnreadableError(path, str(exc)) from exc


def write_app_config(path: Path, config: AppConfig) -> None:
    """Atomically persist *config* as JSON at *path*."""
    text = json.dumps(config.to_dict(), indent=2) + "\n"
    atomic_write_text(path, text, 0o644)


class RevisionStore:
    """Resolve and enumerate revision directories for applications."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def app_dir(self, app_id: str) -> Path:
        return self.root / ensure_path_component(app_id, "application id")

    def revision_dir(self, app_id: str, revision: int) -> Path:
        """Return the directory for *revision*; existence is not checked."""
        return self.app_dir(app_id) / str(revision)

    def config_path(self, app_id: str, revision: int) -> Path:
        return self.revision_dir(app_id, revision) / CONFIG_FILE

    def files_dir(self, app_id: str, revision: int) -> Path:
        return self.revision_dir(app_id, revision) / FILES_DIR

    def vars_dir(self, app_id: str, revision: int) -> Path:
        return self.revision_dir(app_id, revision) / VARS_DIR

    def current_config_path(self, app_id: str) -> Path:
        """Return the path of the last-rendered config copy for *app_id*."""
        return self.app_dir(app_id) / CURRENT_CONFIG_FILE

    def app_ids(self) -> list[str]:
        """Return every application id that has a template directory."""
        if not self.root.is_dir():
            return []
        return sorted(entry.name for entry in self.root.iterdir() if entry.is_dir())

    def list_revisions(self, app_id: str) -> list[int]:
        """Return the revision numbers of *app_id* in ascending order."""
        app_dir = self.app_dir(app_id)
        if not app_dir.is_dir():
            return []
        revisions: list[int] = []
        for entry in app_dir.iterdir():
            if not entry.is_dir() or not entry.name.isdigit():
                continue
            number = int(entry.name)
            if number < 1:
                continue
            if not (entry / CONFIG_FILE).is_file():
                LOGGER.debug("Skipping %s/%s: no %s", app_id, entry.name, CONFIG_FILE)
                continue
            revisions.append(number)
        return sorted(revisions)

    def has_revision(self, app_id: str, revision: int) -> bool:
        return revision in self.list_revisions(app_id)

    def resolve_latest(self, app_id: str) -> int:
        """Return the highest revision of *app_id*.

        Raises :class:`NoRevisionsError` when the application directory is
        missing or contains no revisions.
        """
        revisions = self.list_revisions(app_id)
        if not revisions:
            raise NoRevisionsError(app_id, self.app_dir(app_id))
        return revisions[-1]

    def resolve(self, app_id: str, revision: int | None = None) -> int:
        """Return *revision* after validating it, or the latest when ``None``."""
        if revision is None:
            return self.resolve_latest(app_id)
        if not self.has_revision(app_id, revision):
            raise RevisionNotFoundError(app_id, revision)
        return revision

    def load_config(self, app_id: str, revision: int) -> AppConfig:
        return read_app_config(self.config_path(app_id, revision))

    def load_latest_config(self, app_id: str) -> AppConfig:
        return self.load_config(app_id, self.resolve_latest(app_id))

    def app_name(self, app_id: str) -> str:
        """Return the application name declared by the latest revision."""
        return self.load_latest_config(app_id).name

    def deployed_name(self, app_id: str) -> str:
        """Return the name the application is currently deployed under.

        ``current.config.json`` records what is on disk; without it the
        latest revision's name is used.
        """
        current = self.read_current_config(app_id)
        if current is not None:
            return current.name
        return self.app_name(app_id)

    def read_current_config(self, app_id: str) -> AppConfig | None:
        """Return the last-rendered config, or ``None`` when nothing was rendered."""
        path = self.current_config_path(app_id)
        if not path.exists():
            return None
        return read_app_config(path)

    def save_current_config(self, app_id: str, config: AppConfig) -> None:
        write_app_config(self.current_config_path(app_id), config)

    def remove_current_config(self, app_id: str) -> bool:
        path = self.current_config_path(app_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def rename_latest(self, app_id: str, new_name: str) -> AppConfig:
        """Rewrite the latest revision's config with *new_name* and return it.

        Revisions are otherwise immutable; the name is the one field a rename
        is allowed to change so later operations resolve the new deployment
        directory.
        """
        revision = self.resolve_latest(app_id)
        renamed = self.load_config(app_id, revision).renamed(new_name)
        write_app_config(self.config_path(app_id, revision), renamed)
        return renamed

    def name_in_use(self, name: str, *, exclude: str | None = None) -> str | None:
        """Return the id of another application whose latest name matches *name*.

        The comparison is case-insensitive. Applications whose config cannot
        be read are ignored.
        """
        wanted = name.casefold()
        for app_id in self.app_ids():
            if app_id == exclude:
                continue
            try:
                other = self.load_latest_config(app_id).name
            except (NoRevisionsError, ConfigUnreadableError):
                continue
            if other.casefold() == wanted:
                return app_id
        return None

    def prune(self, app_id: str, keep: int) -> list[int]:
        """Delete the oldest revisions so that at most *keep* remain.

        The latest revision is never deleted. Returns the removed numbers.
        """
        keep = max(keep, 1)
        revisions = self.list_revisions(app_id)
        if len(revisions) <= keep:
            return []
        removed = revisions[: len(revisions) - keep]
        for number in removed:
            shutil.rmtree(self.revision_dir(app_id, number))
            LOGGER.info("Removed revision %d of %s", number, app_id)
        return removed

    def purge(self, app_id: str) -> bool:
        """Remove every revision and the last-rendered config of *app_id*."""
        app_dir = self.app_dir(app_id)
        if not app_dir.exists():
            return False
        shutil.rmtree(app_dir)
        return True


__all__ = [
    "CONFIG_FILE",
    "CURRENT_CONFIG_FILE",
    "RevisionStore",
    "read_app_config",
    "write_app_config",
]
