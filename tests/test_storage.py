import json

import pytest

from siidaa_admin.errors import StorageWriteFailed
from siidaa_admin.storage import JsonFileStorage, MemoryStorage


class TestMemoryStorage:

    def test_set_get_remove(self):
        storage = MemoryStorage()
        storage.set_item("admin_token", "abc")
        assert storage.get_item("admin_token") == "abc"
        storage.remove_item("admin_token")
        assert storage.get_item("admin_token") is None
        storage.remove_item("admin_token")

    def test_quota_exceeded(self):
        storage = MemoryStorage(quota_bytes=5)
        storage.set_item("a", "123")
        with pytest.raises(StorageWriteFailed, match="quota exceeded"):
            storage.set_item("b", "456")
        # replacing a key only counts the new value
        storage.set_item("a", "12345")


class TestJsonFileStorage:

    def test_values_survive_a_new_instance(self, tmp_path):
        path = tmp_path / "storage.json"
        JsonFileStorage(path).set_item("admin_user", json.dumps({"username": "alice"}))

        reopened = JsonFileStorage(path)
        assert json.loads(reopened.get_item("admin_user")) == {"username": "alice"}

    def test_remove_item(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "storage.json")
        storage.set_item("admin_token", "abc")
        storage.set_item("siidaa_admin_logs", "[]")
        storage.remove_item("admin_token")
        assert storage.get_item("admin_token") is None
        assert storage.get_item("siidaa_admin_logs") == "[]"

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{broken", encoding="utf-8")
        storage = JsonFileStorage(path)
        assert storage.get_item("admin_token") is None
        storage.set_item("admin_token", "abc")
        assert storage.get_item("admin_token") == "abc"

    def test_unwritable_location_raises_storage_write_failed(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file", encoding="utf-8")
        storage = JsonFileStorage(blocker / "storage.json")
        with pytest.raises(StorageWriteFailed):
            storage.set_item("admin_token", "abc")

    def test_file_is_read_once(self, tmp_path, monkeypatch):
        path = tmp_path / "storage.json"
        path.write_text(json.dumps({"admin_token": "abc"}), encoding="utf-8")
        storage = JsonFileStorage(path)
        reads = []
        original = storage._load
        monkeypatch.setattr(storage, "_load", lambda: reads.append(1) or original())

        for _ in range(3):
            assert storage.get_item("admin_token") == "abc"
        storage.set_item("siidaa_admin_logs", "[]")

        assert len(reads) == 1
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "admin_token": "abc",
            "siidaa_admin_logs": "[]",
        }

    def test_failed_write_leaves_cached_values_untouched(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file", encoding="utf-8")
        storage = JsonFileStorage(blocker / "storage.json")
        with pytest.raises(StorageWriteFailed):
            storage.set_item("admin_token", "abc")
        assert storage.get_item("admin_token") is None
