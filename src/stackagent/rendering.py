"""Materialise a revision's template tree into a deployment directory.

Substitution is flat and literal: ``${name}`` and ``{{ name }}`` tokens are
replaced with the string value of the variable called ``name``. There is no
expression language. A token whose name has no value is replaced with an
empty string. Names start with a letter or underscore, so compose-style
defaults such as ``${VAR:-x}`` and Go template fields such as ``{{.Name}}``
are not tokens and are left for the orchestrator.
"""
from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .cleanup import CleanupReport, remove_stale_files, sanitize_relative_path
from .envfile import is_valid_env_key, write_env_file
from .errors import ConfigUnreadableError
from .models import AppConfig
from .revisions import CONFIG_FILE, FILES_DIR, VARS_DIR, RevisionStore, read_app_config

LOGGER = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".j2"
VALUES_FILE = "values.json"

_PLACEHOLDER = re.compile(
    r"\$\{(?P<dollar>[A-Za-z_][A-Za-z0-9_.\-]*)\}"
    r"|\{\{\s*(?P<braces>[A-Za-z_][A-Za-z0-9_.\-]*)\s*\}\}"
)


def stringify(value: object) -> str:
    """Return the string form used for substitution and the env file."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def substitute(content: str, variables: Mapping[str, str]) -> str:
    """Replace every placeholder in *content* with its value from *variables*."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group("dollar") or match.group("braces")
        return variables.get(name, "")

    return _PLACEHOLDER.sub(_replace, content)


def load_variables(revision_dir: Path, config: AppConfig | None = None) -> dict[str, str]:
    """Load ``vars/values.json`` from *revision_dir* as a name to string map.

    A missing file yields an empty map. When *config* declares a variable
    whose ``id`` is used as a key, the value is also exposed under the
    variable's ``name``.
    """
    path = revision_dir / VARS_DIR / VALUES_FILE
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigUnreadableError(path, str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise ConfigUnreadableError(path, f"invalid JSON: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigUnreadableError(path, "variable values must be a JSON object")
    for key in raw:
        if not is_valid_env_key(key):
            raise ConfigUnreadableError(path, f"invalid variable name {key!r}")
    values = {key: stringify(value) for key, value in raw.items()}
    if config is not None:
        for variable in config.variables:
            if variable.name not in values and variable.id in values:
                values[variable.name] = values[variable.id]
    return values


@dataclass(slots=True)
class RenderResult:
    """Outcome of one render."""

    config: AppConfig
    deploy_dir: Path
    rendered: list[str] = field(default_factory=list)
    env_file: Path | None = None
    cleanup: CleanupReport = field(default_factory=CleanupReport)


class TemplateRenderer:
    """Render revisions of applications into deployment directories."""

    def __init__(self, store: RevisionStore, *, env_file_name: str = ".stackagent.env") -> None:
        self.store = store
        self.env_file_name = env_file_name

    def render(self, app_id: str, revision_dir: Path, deploy_dir: Path) -> RenderResult:
        """Render *revision_dir* into *deploy_dir*.

        ``current.config.json`` is rewritten only after every file has been
        written, so an interrupted render leaves the previous diff basis in
        place.
        """
        new_config = read_app_config(revision_dir / CONFIG_FILE)
        variables = load_variables(revision_dir, new_config)
        old_config = self._load_prior_config(app_id)
        report = remove_stale_files(deploy_dir, old_config, new_config)

        deploy_dir.mkdir(parents=True, exist_ok=True)
        result = RenderResult(config=new_config, deploy_dir=deploy_dir, cleanup=report)
        result.rendered = self._render_tree(
            revision_dir / FILES_DIR, deploy_dir, new_config, variables
        )

        env_path = deploy_dir / self.env_file_name
        if write_env_file(env_path, variables):
            result.env_file = env_path

        self.store.save_current_config(app_id, new_config)
        LOGGER.info(
            "Rendered %s (%s) into %s: %d files, %d removed",
            app_id,
            new_config.name,
            deploy_dir,
            len(result.rendered),
            len(report.removed),
        )
        return result

    def _load_prior_config(self, app_id: str) -> AppConfig | None:
        try:
            return self.store.read_current_config(app_id)
        except ConfigUnreadableError as exc:
            LOGGER.warning("Ignoring unreadable current config for %s: %s", app_id, exc)
            return None

    def _render_tree(
        self,
        files_root: Path,
        deploy_dir: Path,
        config: AppConfig,
        variables: Mapping[str, str],
    ) -> list[str]:
        if not files_root.is_dir():
            raise FileNotFoundError(f"Template directory {files_root} does not exist")

        targets = {entry.id: entry.filename for entry in config.files}
        rendered: list[str] = []
        for current, dirnames, filenames in os.walk(files_root):
            dirnames.sort()
            source_dir = Path(current)
            relative_dir = source_dir.relative_to(files_root)
            (deploy_dir / relative_dir).mkdir(mode=0o755, parents=True, exist_ok=True)
            for filename in sorted(filenames):
                source = source_dir / filename
                relative = (relative_dir / filename).as_posix()
                destination_name = self._destination_for(relative, targets)
                destination = deploy_dir / destination_name
                destination.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
                self._render_file(source, destination, variables)
                rendered.append(destination_name)
        return rendered

    @staticmethod
    def _destination_for(relative: str, targets: Mapping[str, str]) -> str:
        stem = relative[: -len(TEMPLATE_SUFFIX)] if relative.endswith(TEMPLATE_SUFFIX) else relative
        for key in (relative, stem):
            if key in targets:
                return sanitize_relative_path(targets[key])
        return stem

    @staticmethod
    def _render_file(source: Path, destination: Path, variables: Mapping[str, str]) -> None:
        data = source.read_bytes()
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            destination.write_bytes(data)
            return
        destination.write_text(substitute(text, variables), encoding="utf-8")
        os.chmod(destination, 0o644)


__all__ = ["RenderResult", "TemplateRenderer", "load_variables", "stringify", "substitute"]
