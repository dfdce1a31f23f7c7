"""Environment file tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from stackagent.envfile import (
    format_env_value,
    is_valid_env_key,
    parse_env_text,
    read_env_file,
    render_env_file,
    write_env_file,
)
from stackagent.errors import InvalidVariableNameError
from stackagent.exit_codes import ExitCode


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("8080", "8080"),
        ("", ""),
        ("hello world", '"hello world"'),
        ('say "hi"', '"say \\"hi\\""'),
        ("C:\\temp", '"C:\\\\temp"'),
        ("line1\nline2", '"line1\\nline2"'),
        ("line1\r\nline2", '"line1\\nline2"'),
        ("a#b", '"a#b"'),
    ],
)
def test_format_env_value(value: str, expected: str) -> None:
    """Values with special characters are quoted and escaped."""
    assert format_env_value(value) == expected


def test_render_env_file_sorts_keys() -> None:
    """Output is sorted by key with one assignment per line."""
    text = render_env_file({"b": "2", "a": "one two"})

    assert text == 'a="one two"\nb=2\n'


def test_write_env_file_sets_mode(tmp_path: Path) -> None:
    """The env file is private to the owner."""
    path = tmp_path / ".stackagent.env"

    assert write_env_file(path, {"port": "8080"}) is True

    assert path.read_text(encoding="utf-8") == "port=8080\n"
    assert (path.stat().st_mode & 0o777) == 0o600


def test_write_env_file_removes_when_empty(tmp_path: Path) -> None:
    """An empty mapping removes a stale env file."""
    path = tmp_path / ".stackagent.env"
    path.write_text("old=1\n")

    assert write_env_file(path, {}) is False
    assert not path.exists()
    assert write_env_file(path, {}) is False


@pytest.mark.parametrize("key", ["", "a=b", "two\nlines", "with space", "tab\there", "nul\x00"])
def test_write_env_file_rejects_bad_keys(tmp_path: Path, key: str) -> None:
    """Keys that cannot be written as a single ``KEY=`` line are rejected."""
    path = tmp_path / ".env"

    with pytest.raises(InvalidVariableNameError) as excinfo:
        write_env_file(path, {key: "1", "GOOD": "2"})

    assert excinfo.value.name == key
    assert excinfo.value.exit_code == ExitCode.VALIDATION
    assert not path.exists()


@pytest.mark.parametrize("key", ["PORT", "db.host", "my-var", "_x1"])
def test_is_valid_env_key_accepts(key: str) -> None:
    """Ordinary variable names are accepted."""
    assert is_valid_env_key(key) is True


def test_parse_reverses_render(tmp_path: Path) -> None:
    """Values written with escaping parse back to the original strings."""
    values = {"msg": 'He said "hi"\nbye', "path": "C:\\temp", "plain": "x"}
    path = tmp_path / ".env"
    write_env_file(path, values)

    assert read_env_file(path) == values
    assert read_env_file(tmp_path / "missing") == {}


def test_parse_skips_comments_and_blank_lines() -> None:
    """Comments, blanks and lines without '=' are ignored."""
    assert parse_env_text("# comment\n\nnoise\nkey=value\n") == {"key": "value"}
