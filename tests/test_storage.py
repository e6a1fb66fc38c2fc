import json
from pathlib import Path

import pytest

from unified_categorizer.errors import PersistenceError
from unified_categorizer.storage import InMemoryStore, JsonFileStore


def test_in_memory_store_round_trip_is_isolated() -> None:
    store = InMemoryStore()
    value = {"rules": [1, 2]}

    store.set("key", value)
    value["rules"].append(3)
    loaded = store.get("key")
    loaded["rules"].append(4)

    assert store.get("key") == {"rules": [1, 2]}
    assert store.get("missing") is None


def test_in_memory_store_rejects_non_json_values() -> None:
    with pytest.raises(PersistenceError):
        InMemoryStore().set("key", {"when": object()})


def test_json_file_store_writes_one_file_per_key(tmp_path: Path) -> None:
    store = JsonFileStore(str(tmp_path / "data"))

    store.set("categorization_rules", [{"id": "r1"}])

    path = tmp_path / "data" / "categorization_rules.json"
    assert json.loads(path.read_text()) == [{"id": "r1"}]
    assert store.get("categorization_rules") == [{"id": "r1"}]
    assert store.get("missing") is None
    assert not list((tmp_path / "data").glob("*.tmp"))


def test_json_file_store_invalid_key(tmp_path: Path) -> None:
    store = JsonFileStore(str(tmp_path))

    with pytest.raises(PersistenceError):
        store.set("../escape", 1)


def test_json_file_store_corrupt_file(tmp_path: Path) -> None:
    (tmp_path / "broken.json").write_text("{not json")
    store = JsonFileStore(str(tmp_path))

    with pytest.raises(PersistenceError) as exc_info:
        store.get("broken")

    assert exc_info.value.key == "broken"


def test_json_file_store_failed_write_keeps_previous_value(tmp_path: Path) -> None:
    store = JsonFileStore(str(tmp_path))
    store.set("config", {"primary": "rule-based"})

    with pytest.raises(PersistenceError):
        store.set("config", {"bad": object()})

    assert store.get("config") == {"primary": "rule-based"}
    assert not (tmp_path / "config.json.tmp").exists()


def test_json_file_store_non_utf8_file(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_bytes(b"\xff\xfe{}")
    store = JsonFileStore(str(tmp_path))

    with pytest.raises(PersistenceError) as exc_info:
        store.get("config")

    assert isinstance(exc_info.value.cause, UnicodeDecodeError)
