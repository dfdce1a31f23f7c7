"""YAML record of the deployments managed on this host.

The registry directory (``/opt/stackagent/registry`` by default) stores
``deployments.yml``: one entry per application recording the last revision
rendered, the last action performed and the status observed afterwards. The
file is informational. ``current.config.json`` remains the basis for
differential cleanup.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover
    raise RuntimeError(
        "PyYAML is required to manage stackagent state. Install with `pip install stackagent`."
    ) from exc

DEPLOYMENTS_FILE = "deployments.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


def atomic_write_text(path: Path, text: str, mode: int = 0o640) -> None:
    """Write *text* to *path* via a temporary sibling and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_path, path)
        os.chmod(path, mode)
    finally:
        tmp_path.unlink(missing_ok=True)


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML deployment registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        text = yaml.safe_dump(dict(payload), sort_keys=False)
        atomic_write_text(self.path_for(name), text, 0o640)

    # Deployment helpers -------------------------------------------------
    def read_deployments(self) -> list[dict[str, Any]]:
        """Return every deployment entry (empty list if the file is missing)."""
        value = self.read(DEPLOYMENTS_FILE, default={"deployments": []})
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"{DEPLOYMENTS_FILE} must contain a mapping.")
        entries = value.get("deployments") or []
        if not isinstance(entries, list):
            raise StateRegistryError("'deployments' must be a list.")
        return [dict(entry) for entry in entries if isinstance(entry, Mapping)]

    def get_deployment(self, app_id: str) -> dict[str, Any] | None:
        """Return the entry recorded for *app_id*, if any."""
        for entry in self.read_deployments():
            if entry.get("app_id") == app_id:
                return entry
        return None

    def record_deployment(
        self,
        app_id: str,
        *,
        name: str,
        action: str,
        revision: int | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        """Insert or update the entry for *app_id* and return it."""
        if not app_id.strip():
            raise StateRegistryError("Application id must be a non-empty string.")
        entries = self.read_deployments()
        existing = next((entry for entry in entries if entry.get("app_id") == app_id), None)
        entry: dict[str, Any] = dict(existing or {"app_id": app_id})
        entry["name"] = name
        if revision is not None:
            entry["revision"] = revision
        if status is not None:
            entry["status"] = status
        entry["last_action"] = action
        entry["updated_at"] = datetime.now(UTC).isoformat(timespec="seconds")

        if existing is None:
            entries.append(entry)
        else:
            entries = [entry if item.get("app_id") == app_id else item for item in entries]
        self.write(DEPLOYMENTS_FILE, {"deployments": entries})
        return deepcopy(entry)

    def remove_deployment(self, app_id: str) -> bool:
        """Drop the entry for *app_id*. Returns ``False`` when none existed."""
        entries = self.read_deployments()
        filtered = [entry for entry in entries if entry.get("app_id") != app_id]
        if len(filtered) == len(entries):
            return False
        self.write(DEPLOYMENTS_FILE, {"deployments": filtered})
        return True


__all__ = ["DEPLOYMENTS_FILE", "StateRegistry", "StateRegistryError", "atomic_write_text"]
