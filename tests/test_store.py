import os
import stat

import pytest

from sentinel.errors import StorageError
from sentinel.store import JsonFileStore, MemoryStore


def test_memory_store_get_set_exists():
    store = MemoryStore()
    assert store.get("pub") is None
    assert not store.exists("pub")
    store.set("pub", "abc")
    assert store.get("pub") == "abc"
    assert store.exists("pub")
    store.set("pub", "def")
    assert store.get("pub") == "def"


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "store.json"
    JsonFileStore(path).set("userId", "alice")
    assert JsonFileStore(path).get("userId") == "alice"


def test_json_store_file_is_private(tmp_path):
    path = tmp_path / "store.json"
    JsonFileStore(path).set("sec", "secret")
    mode = stat.S_IMODE(os.stat(path).st_mode)
    assert mode == stat.S_IRUSR | stat.S_IWUSR


def test_json_store_missing_file_is_empty(tmp_path):
    store = JsonFileStore(tmp_path / "absent.json")
    assert store.get("pub") is None
    assert not (tmp_path / "absent.json").exists()


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_json_store_corrupt_file_is_storage_error(tmp_path, content):
    path = tmp_path / "store.json"
    path.write_text(content)
    with pytest.raises(StorageError):
        JsonFileStore(path)


def test_json_store_failed_write_changes_nothing(tmp_path, monkeypatch):
    path = tmp_path / "store.json"
    store = JsonFileStore(path)
    store.set("userId", "alice")

    def disk_full(src, dst):
        raise OSError("no space left on device")

    monkeypatch.setattr("sentinel.store.os.replace", disk_full)
    with pytest.raises(StorageError):
        store.set("userId", "bob")

    assert store.get("userId") == "alice"
    assert not store.exists("bob")
    assert JsonFileStore(path).get("userId") == "alice"
    assert not (tmp_path / "store.tmp").exists()
