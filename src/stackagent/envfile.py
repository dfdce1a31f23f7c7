"""Read and write the ``KEY=value`` environment file handed to the orchestrator."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from .errors import InvalidVariableNameError
from .state import atomic_write_text

LOGGER = logging.getLogger(__name__)

# Any of these force the value to be double-quoted.
_QUOTE_TRIGGERS = frozenset(" \t\n\r#\"'?=&$,;:{}[]()\\")


def is_valid_env_key(key: str) -> bool:
    """Return whether *key* can stand on the left of ``KEY=`` on one line."""
    return bool(key) and not any(char == "=" or char == "\x00" or char.isspace() for char in key)


def format_env_value(value: str) -> str:
    """Return *value* as it should appear on the right of ``KEY=``."""
    if not any(char in _QUOTE_TRIGGERS for char in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    escaped = escaped.replace("\r\n", "\\n").replace("\n", "\\n").replace("\r", "\\r")
    return f'"{escaped}"'


def render_env_file(variables: Mapping[str, str]) -> str:
    """Return env file text with keys sorted for deterministic output."""
    lines = [f"{key}={format_env_value(variables[key])}" for key in sorted(variables)]
    return "".join(f"{line}\n" for line in lines)


def write_env_file(path: Path, variables: Mapping[str, str]) -> bool:
    """Write *variables* to *path*.

    An empty mapping removes any existing file instead, so a stale file is
    never passed to the orchestrator. Returns ``True`` when a file was written.
    """
    for key in variables:
        if not is_valid_env_key(key):
            raise InvalidVariableNameError(key)
    if not variables:
        if path.exists():
            path.unlink()
            LOGGER.debug("Removed env file %s (no variables)", path)
        return False
    atomic_write_text(path, render_env_file(variables), 0o600)
    return True


def _unescape(value: str) -> str:
    result: list[str] = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        nxt = next(chars, "")
        result.append({"n": "\n", "r": "\r"}.get(nxt, nxt))
    return "".join(result)


def parse_env_text(text: str) -> dict[str, str]:
    """Parse env file *text* as produced by :func:`render_env_file`."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
            value = _unescape(value[1:-1])
        values[key.strip()] = value
    return values


def read_env_file(path: Path) -> dict[str, str]:
    """Return the variables stored in *path*, or an empty mapping if absent."""
    if not path.exists():
        return {}
    return parse_env_text(path.read_text(encoding="utf-8"))


__all__ = [
    "format_env_value",
    "is_valid_env_key",
    "parse_env_text",
    "read_env_file",
    "render_env_file",
    "write_env_file",
]
