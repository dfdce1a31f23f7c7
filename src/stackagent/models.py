"""Data model for application revisions and live container state."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum

from .errors import StackAgentError


class AppConfigError(StackAgentError, ValueError):
    """Raised when a ``config.json`` payload does not match the schema."""


@dataclass(frozen=True, slots=True)
class AppFile:
    """A rendered file declared by a revision."""

    id: str
    filename: str
    origin: str = ""

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "filename": self.filename, "origin": self.origin}


@dataclass(frozen=True, slots=True)
class AppVariable:
    """Identity of a substitution variable. Values live in ``vars/values.json``."""

    id: str
    name: str

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True, slots=True)
class ExtensionValue:
    """Cross-reference from this application to another application."""

    extension: str
    extension_app_id: str

    def to_dict(self) -> dict[str, object]:
        return {"extension": self.extension, "extensionAppId": self.extension_app_id}


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Declarative definition of one application revision.

    Keys the engine does not interpret are preserved in ``extra`` so that a
    config written back to disk (``current.config.json`` or a rename) keeps
    everything the control plane put there.
    """

    id: str
    name: str
    type: str = ""
    files: tuple[AppFile, ...] = ()
    variables: tuple[AppVariable, ...] = ()
    extension_values: tuple[ExtensionValue, ...] = ()
    extra: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> AppConfig:
        """Build an :class:`AppConfig` from a decoded ``config.json`` mapping."""
        if not isinstance(payload, Mapping):
            raise AppConfigError("Application config must be a JSON object.")
        app_id = _require_str(payload, "id")
        name = _require_str(payload, "name")
        app_type = payload.get("type") or ""
        if not isinstance(app_type, str):
            raise AppConfigError("Field 'type' must be a string.")

        files = tuple(
            AppFile(
                id=_require_str(item, "id", f"files[{index}]"),
                filename=_require_str(item, "filename", f"files[{index}]"),
                origin=str(item.get("origin") or ""),
            )
            for index, item in enumerate(_mapping_list(payload, "files"))
        )
        seen: set[str] = set()
        for entry in files:
            if entry.id in seen:
                raise AppConfigError(f"Duplicate file id '{entry.id}'.")
            seen.add(entry.id)

        variables = tuple(
            AppVariable(
                id=_require_str(item, "id", f"variables[{index}]"),
                name=_require_str(item, "name", f"variables[{index}]"),
            )
            for index, item in enumerate(_mapping_list(payload, "variables"))
        )
        extension_values = tuple(
            ExtensionValue(
                extension=str(item.get("extension") or ""),
                extension_app_id=str(
                    item.get("extensionAppId") or item.get("extensionAppID") or ""
                ),
            )
            for item in _mapping_list(payload, "extensionValues")
        )
        known = {"id", "name", "type", "files", "variables", "extensionValues"}
        extra = {key: value for key, value in payload.items() if key not in known}
        return cls(
            id=app_id,
            name=name,
            type=app_type,
            files=files,
            variables=variables,
            extension_values=extension_values,
            extra=extra,
        )

    def to_dict(self) -> dict[str, object]:
        """Return the ``config.json`` representation."""
        data: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "files": [entry.to_dict() for entry in self.files],
            "variables": [entry.to_dict() for entry in self.variables],
            "extensionValues": [entry.to_dict() for entry in self.extension_values],
        }
        data.update(self.extra)
        return data

    def filenames(self) -> set[str]:
        """Return the set of rendered filenames declared by this revision."""
        return {entry.filename for entry in self.files}

    def renamed(self, new_name: str) -> AppConfig:
        """Return a copy of the config carrying *new_name*."""
        return AppConfig(
            id=self.id,
            name=new_name,
            type=self.type,
            files=self.files,
            variables=self.variables,
            extension_values=self.extension_values,
            extra=dict(self.extra),
        )


class ContainerStatusCode(IntEnum):
    """Normalised container and application status."""

    UNKNOWN = 0
    ACTIVE = 1
    IDLE = 2
    RESTARTING = 3
    PROBLEMATIC = 4
    STOPPED = 5

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class ContainerPort:
    """A published container port."""

    private: int
    public: int
    protocol: str = "tcp"
    ip: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "private": self.private,
            "public": self.public,
            "protocol": self.protocol,
            "ip": self.ip,
        }


@dataclass(frozen=True, slots=True)
class Container:
    """A live container as reported by the inspector. Never persisted."""

    id: str
    name: str
    raw_state: str
    exit_code: int = 0
    ports: tuple[ContainerPort, ...] = ()
    project: str = ""
    status_text: str = ""
    status_code: ContainerStatusCode = ContainerStatusCode.UNKNOWN
    error: str = ""

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "state": self.raw_state,
            "exit_code": self.exit_code,
            "status": self.status_code.label,
            "ports": [port.to_dict() for port in self.ports],
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True, slots=True)
class AppStatus:
    """Application-level status derived from its containers."""

    app_id: str
    app_name: str
    status_code: ContainerStatusCode
    containers: tuple[Container, ...] = ()

    @property
    def is_running(self) -> bool:
        """Return ``True`` when any container is up in some form."""
        return self.status_code not in (ContainerStatusCode.STOPPED, ContainerStatusCode.UNKNOWN)

    def to_dict(self) -> dict[str, object]:
        return {
            "app_id": self.app_id,
            "app_name": self.app_name,
            "status": self.status_code.label,
            "status_code": int(self.status_code),
            "containers": [container.to_dict() for container in self.containers],
        }


def _require_str(payload: Mapping[str, object], key: str, label: str = "") -> str:
    value = payload.get(key)
    where = f"{label}.{key}" if label else key
    if not isinstance(value, str) or not value:
        raise AppConfigError(f"Field '{where}' must be a non-empty string.")
    return value


def _mapping_list(payload: Mapping[str, object], key: str) -> list[Mapping[str, object]]:
    raw = payload.get(key)
    if raw is None:
        return []
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        raise AppConfigError(f"Field '{key}' must be a list.")
    items: list[Mapping[str, object]] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise AppConfigError(f"Field '{key}[{index}]' must be an object.")
        items.append(item)
    return items


__all__ = [
    "AppConfig",
    "AppConfigError",
    "AppFile",
    "AppStatus",
    "AppVariable",
    "Container",
    "ContainerPort",
    "ContainerStatusCode",
    "ExtensionValue",
]
