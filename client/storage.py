# client/storage.py
"""
Key-value storage with the shape of the browser Web Storage API.

`LocalStorage` is durable (one JSON file per key under a directory);
`SessionStorage` lives only as long as the process.
"""
import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

from client.errors import StorageError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class SessionStorage:

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = str(value)

    def clear(self) -> None:
        self._items.clear()


class LocalStorage:
    """Durable storage scoped to one directory (the "profile")."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._lock = threading.RLock()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.directory}: {e}") from e

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        with self._lock:
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as e:
                raise StorageError(f"Cannot read {path}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        with self._lock:
            # Write to a sibling temp file then swap, so readers never see half a file
            try:
                fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            except OSError as e:
                raise StorageError(f"Cannot write {path}: {e}") from e
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(str(value))
                os.replace(tmp_name, path)
            except OSError as e:
                Path(tmp_name).unlink(missing_ok=True)
                raise StorageError(f"Cannot write {path}: {e}") from e

    def remove_item(self, key: str) -> None:
        with self._lock:
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Cannot remove {key}: {e}") from e

    def clear(self) -> None:
        with self._lock:
            for path in self.directory.glob("*.json"):
                path.unlink()


def load_json(storage, key: str, default: Any = None) -> Any:
    raw = storage.get_item(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StorageError(f"Stored value for '{key}' is not valid JSON: {e}") from e


def dump_json(storage, key: str, value: Any) -> None:
    try:
        raw = json.dumps(value)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value for '{key}' is not JSON-serializable: {e}") from e
    storage.set_item(key, raw)
