import pytest

from support_widget.errors import StorageUnavailableError
from support_widget.identity import VISITOR_ID_KEY, VisitorIdentityManager
from support_widget.stores.files import JsonFileKeyValueStore


def test_values_persist_across_instances(tmp_path):
    path = tmp_path / "state" / "widget.json"
    JsonFileKeyValueStore(path).set("a", "1")
    store = JsonFileKeyValueStore(path)
    assert store.get("a") == "1"
    store.delete("a")
    assert store.get("a") is None
    assert not path.with_suffix(".json.tmp").exists()


def test_missing_and_corrupt_files_read_as_empty(tmp_path, caplog):
    path = tmp_path / "widget.json"
    store = JsonFileKeyValueStore(path)
    assert store.get("a") is None

    path.write_text("{not json", encoding="utf-8")
    assert store.get("a") is None
    assert "corrupt" in caplog.text

    store.set("a", "1")
    assert store.get("a") == "1"


def test_unwritable_location_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    store = JsonFileKeyValueStore(blocker / "widget.json")
    with pytest.raises(StorageUnavailableError):
        store.set("a", "1")


def test_visitor_identity_survives_restart(tmp_path):
    path = tmp_path / "widget.json"
    first = VisitorIdentityManager(JsonFileKeyValueStore(path)).get_or_create()
    second = VisitorIdentityManager(JsonFileKeyValueStore(path)).get_or_create()
    assert first.id == second.id
    assert JsonFileKeyValueStore(path).get(VISITOR_ID_KEY) == first.id
