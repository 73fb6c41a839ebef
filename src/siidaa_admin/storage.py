# src/siidaa_admin/storage.py
"""
Durable key-value storage shared by the session manager and the log store.

Both stores keep string values under disjoint keys, last write wins per key.
"""

import json
import os
import typing
from pathlib import Path

from .errors import StorageWriteFailed


class Storage(typing.Protocol):
    def get_item(self, key: str) -> typing.Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage. `quota_bytes` caps the total size of stored values."""

    def __init__(self, initial: typing.Optional[typing.Dict[str, str]] = None,
                 quota_bytes: typing.Optional[int] = None):
        self._items: typing.Dict[str, str] = dict(initial or {})
        self.quota_bytes = quota_bytes

    def get_item(self, key: str) -> typing.Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._items.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageWriteFailed(key, "quota exceeded")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> typing.List[str]:
        return list(self._items)


class JsonFileStorage:
    """
    Keeps every key in one JSON object on disk.

    The file is read once, on first access. Writes go through to disk and only
    update the cached copy once the file has been replaced.
    """

    def __init__(self, path: typing.Union[str, Path]):
        self.path = Path(path)
        self._items: typing.Optional[typing.Dict[str, str]] = None

    def _load(self) -> typing.Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            print(f"STORAGE: Could not read {self.path}: {e}. Treating as empty.")
            return {}
        if not isinstance(raw, dict):
            print(f"STORAGE: {self.path} does not hold a JSON object. Treating as empty.")
            return {}
        return {k: v for k, v in raw.items() if isinstance(v, str)}

    @property
    def items(self) -> typing.Dict[str, str]:
        if self._items is None:
            self._items = self._load()
        return self._items

    def _save(self, items: typing.Dict[str, str], key: str) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(items), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageWriteFailed(key, str(e)) from e
        self._items = items

    def get_item(self, key: str) -> typing.Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.items.get(key) == value:
            return
        items = dict(self.items)
        items[key] = value
        self._save(items, key)

    def remove_item(self, key: str) -> None:
        if key in self.items:
            items = dict(self.items)
            del items[key]
            self._save(items, key)
