import json
import os
import stat
import threading
from pathlib import Path
from typing import Optional, Protocol

from sentinel.config import STORE_FILE
from sentinel.errors import StorageError


class KeyValueStore(Protocol):
    """String-keyed store the session keeps its identity and settings in."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def exists(self, key: str) -> bool: ...


class MemoryStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data


class JsonFileStore:
    """
    One JSON object on disk, rewritten whole on every set (last write wins).

    The file holds the secret key, so it is created owner-read/write only.
    """

    def __init__(self, path: Path = STORE_FILE):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as exc:
            raise StorageError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"{self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self, data: dict[str, str]):
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp, self.path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"cannot write {self.path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        """Write through to disk; on failure neither memory nor disk changes."""
        with self._lock:
            data = dict(self._data)
            data[key] = value
            self._flush(data)
            self._data = data

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._data
