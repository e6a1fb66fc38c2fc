import copy
import json
import os
import re
import threading
from typing import Any, Protocol

from unified_categorizer.errors import PersistenceError
from unified_categorizer.logger import get_logger

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Blob store for JSON-compatible values. Both methods may raise PersistenceError."""

    def get(self, key: str) -> Any | None:
        ...

    def set(self, key: str, value: Any) -> None:
        ...


class InMemoryStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        try:
            # Same contract as the file store: only JSON values are accepted.
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(key, exc) from exc
        with self._lock:
            self._data[key] = json.loads(encoded)


class JsonFileStore:
    """One ``<key>.json`` file per key inside ``data_dir``."""

    def __init__(self, data_dir: str = ".") -> None:
        self.data_dir = data_dir
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> str:
        if not _KEY_PATTERN.match(key):
            raise PersistenceError(key, ValueError("invalid key"))
        return os.path.join(self.data_dir, f"{key}.json")

    def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            # ValueError covers both bad JSON and bytes that are not UTF-8
            raise PersistenceError(key, exc) from exc

    def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp_path = f"{path}.tmp"
        with self._lock:
            try:
                if self.data_dir not in {"", ".", "./"}:
                    os.makedirs(self.data_dir, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as handle:
                    json.dump(value, handle, indent=2)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as exc:
                logger.debug("[STORE] Write of %s failed, removing temp file.", key)
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise PersistenceError(key, exc) from exc
