"""Revision store tests."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import RevisionWriter

from stackagent.errors import (
    ConfigUnreadableError,
    NoRevisionsError,
    PathTraversalError,
    RevisionNotFoundError,
)
from stackagent.models import AppConfig
from stackagent.revisions import RevisionStore, read_app_config


def test_resolve_latest_picks_highest_revision(
    tmp_path: Path, revision_writer: RevisionWriter
) -> None:
    """The highest numbered revision wins, compared numerically."""
    for number in (1, 2, 3, 10):
        revision_writer("a1", number, name="shop")
    store = RevisionStore(tmp_path / "templates")

    assert store.list_revisions("a1") == [1, 2, 3, 10]
    assert store.resolve_latest("a1") == 10


def test_non_revision_entries_are_ignored(
    tmp_path: Path, revision_writer: RevisionWriter
) -> None:
    """Non-numeric directories, revision zero and dirs without config are skipped."""
    revision_writer("a1", 1, name="shop")
    app_dir = tmp_path / "templates" / "a1"
    (app_dir / "0").mkdir()
    (app_dir / "0" / "config.json").write_text("{}")
    (app_dir / "7").mkdir()
    (app_dir / "draft").mkdir()
    (app_dir / "current.config.json").write_text("{}")
    store = RevisionStore(tmp_path / "templates")

    assert store.list_revisions("a1") == [1]
    assert store.has_revision("a1", 1) is True
    assert store.has_revision("a1", 7) is False
    assert store.resolve_latest("a1") == 1


def test_resolve_without_revisions_raises(tmp_path: Path) -> None:
    """Missing applications report NoRevisionsError."""
    store = RevisionStore(tmp_path / "templates")

    with pytest.raises(NoRevisionsError):
        store.resolve_latest("ghost")


def test_resolve_explicit_revision(tmp_path: Path, revision_writer: RevisionWriter) -> None:
    """Explicit revisions are validated."""
    revision_writer("a1", 1, name="shop")
    revision_writer("a1", 2, name="shop")
    store = RevisionStore(tmp_path / "templates")

    assert store.resolve("a1") == 2
    assert store.resolve("a1", 1) == 1
    with pytest.raises(RevisionNotFoundError):
        store.resolve("a1", 5)


def test_read_app_config_errors(tmp_path: Path) -> None:
    """Missing, malformed and schema-invalid configs raise ConfigUnreadableError."""
    missing = tmp_path / "missing.json"
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    invalid = tmp_path / "invalid.json"
    invalid.write_text(json.dumps({"id": "a1"}))

    for path in (missing, broken, invalid):
        with pytest.raises(ConfigUnreadableError):
            read_app_config(path)


def test_current_config_roundtrip(tmp_path: Path, revision_writer: RevisionWriter) -> None:
    """The last-rendered config is stored beside the revisions."""
    revision_writer("a1", 1, name="shop")
    store = RevisionStore(tmp_path / "templates")
    config = store.load_latest_config("a1")

    assert store.read_current_config("a1") is None
    store.save_current_config("a1", config)

    assert store.current_config_path("a1") == tmp_path / "templates" / "a1" / "current.config.json"
    assert store.read_current_config("a1") == config
    assert store.remove_current_config("a1") is True
    assert store.remove_current_config("a1") is False


def test_rename_latest_rewrites_only_latest(
    tmp_path: Path, revision_writer: RevisionWriter
) -> None:
    """Renaming updates the latest revision and leaves older ones intact."""
    revision_writer("a1", 1, name="shop")
    revision_writer("a1", 2, name="shop")
    store = RevisionStore(tmp_path / "templates")

    renamed = store.rename_latest("a1", "store")

    assert renamed.name == "store"
    assert store.app_name("a1") == "store"
    assert store.load_config("a1", 1).name == "shop"


def test_name_in_use_is_case_insensitive(
    tmp_path: Path, revision_writer: RevisionWriter
) -> None:
    """Names are compared case-insensitively and the caller is excluded."""
    revision_writer("a1", 1, name="Shop")
    revision_writer("b2", 1, name="blog")
    store = RevisionStore(tmp_path / "templates")

    assert store.name_in_use("shop") == "a1"
    assert store.name_in_use("SHOP", exclude="a1") is None
    assert store.name_in_use("wiki") is None


def test_prune_keeps_latest(tmp_path: Path, revision_writer: RevisionWriter) -> None:
    """Pruning removes the oldest revisions and never the latest."""
    for number in range(1, 5):
        revision_writer("a1", number, name="shop")
    store = RevisionStore(tmp_path / "templates")

    assert store.prune("a1", 2) == [1, 2]
    assert store.list_revisions("a1") == [3, 4]
    assert store.prune("a1", 0) == [3]
    assert store.list_revisions("a1") == [4]
    assert store.prune("a1", 5) == []


def test_purge_removes_application(tmp_path: Path, revision_writer: RevisionWriter) -> None:
    """Purging deletes every revision."""
    revision_writer("a1", 1, name="shop")
    store = RevisionStore(tmp_path / "templates")

    assert store.purge("a1") is True
    assert store.app_ids() == []
    assert store.purge("a1") is False


def test_app_config_preserves_unknown_keys() -> None:
    """Keys outside the schema survive a round trip."""
    payload = {
        "id": "a1",
        "name": "shop",
        "files": [{"id": "f1", "filename": "app.yml", "origin": "user"}],
        "extensionValues": [{"extension": "expose", "extensionAppID": "b2"}],
        "owner": "team-a",
    }

    config = AppConfig.from_dict(payload)

    assert config.extension_values[0].extension_app_id == "b2"
    data = config.to_dict()
    assert data["owner"] == "team-a"
    assert data["extensionValues"] == [{"extension": "expose", "extensionAppId": "b2"}]
    assert config.filenames() == {"app.yml"}


def test_deployed_name_prefers_current_config(
    tmp_path: Path, revision_writer: RevisionWriter
) -> None:
    """The last rendered name wins over a newer revision's name."""
    revision_writer("a1", 1, name="old")
    store = RevisionStore(tmp_path / "templates")
    assert store.deployed_name("a1") == "old"

    store.save_current_config("a1", store.load_config("a1", 1))
    revision_writer("a1", 2, name="new")

    assert store.app_name("a1") == "new"
    assert store.deployed_name("a1") == "old"


@pytest.mark.parametrize("app_id", ["../x", "a/b", "..", "."])
def test_app_ids_are_single_path_components(tmp_path: Path, app_id: str) -> None:
    """Application ids cannot point outside the templates root."""
    store = RevisionStore(tmp_path / "templates")

    with pytest.raises(PathTraversalError):
        store.list_revisions(app_id)
    with pytest.raises(PathTraversalError):
        store.purge(app_id)
