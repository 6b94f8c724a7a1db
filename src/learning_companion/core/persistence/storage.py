"""
Key-value storage interface for durable profiles, ledgers and snapshots.

Components depend only on ``KeyValueStore``; the in-memory store serves tests
and ephemeral deployments, the JSON file store persists under a data directory.
Keys are slash-separated paths such as ``profiles/user-1``.
"""

import copy
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..exceptions import StorageError
from .json_manager import JSONRepository

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]+(/[A-Za-z0-9_.:@-]+)*$")


def validate_key(key: str) -> str:
    """Reject keys that could escape the store root."""
    if not _KEY_PATTERN.match(key) or ".." in key.split("/"):
        raise StorageError(
            f"Invalid storage key: {key!r}",
            error_code="INVALID_KEY",
            details={"key": key},
            component="KeyValueStore",
        )
    return key


class KeyValueStore(ABC):
    """Abstract keyed store with append-only logs."""

    @abstractmethod
    async def get(self, key: str, default: Optional[Any] = None) -> Any:
        """Return the value stored under key, or default."""
        pass

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        """Insert or overwrite the value under key."""
        pass

    @abstractmethod
    async def list(self, prefix: str = "") -> List[str]:
        """List keys starting with prefix, sorted."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key; return whether it existed."""
        pass

    @abstractmethod
    async def append(self, key: str, record: Dict[str, Any]) -> None:
        """Append a record to the log under key."""
        pass

    @abstractmethod
    async def read_log(self, key: str) -> List[Dict[str, Any]]:
        """Return all records appended under key, oldest first."""
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store. Values are deep-copied so callers cannot alias state."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}
        self._logs: Dict[str, List[Dict[str, Any]]] = {}

    async def get(self, key: str, default: Optional[Any] = None) -> Any:
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    async def put(self, key: str, value: Any) -> None:
        self._values[validate_key(key)] = copy.deepcopy(value)

    async def list(self, prefix: str = "") -> List[str]:
        keys = set(self._values) | set(self._logs)
        return sorted(k for k in keys if k.startswith(prefix))

    async def delete(self, key: str) -> bool:
        existed = key in self._values or key in self._logs
        self._values.pop(key, None)
        self._logs.pop(key, None)
        return existed

    async def append(self, key: str, record: Dict[str, Any]) -> None:
        self._logs.setdefault(validate_key(key), []).append(copy.deepcopy(record))

    async def read_log(self, key: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._logs.get(key, []))


class JSONFileStore(KeyValueStore):
    """File-backed store: ``<root>/<key>.json`` documents and ``<key>.jsonl`` logs."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _document_path(self, key: str) -> Path:
        return self.root / f"{validate_key(key)}.json"

    def _log_path(self, key: str) -> Path:
        return self.root / f"{validate_key(key)}.jsonl"

    async def get(self, key: str, default: Optional[Any] = None) -> Any:
        return JSONRepository.load_json(self._document_path(key), default)

    async def put(self, key: str, value: Any) -> None:
        path = self._document_path(key)
        try:
            JSONRepository.save_json(path, value)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to write {key}: {e}",
                error_code="STORAGE_WRITE_FAILED",
                details={"key": key},
                component="JSONFileStore",
            ) from e

    async def list(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []

        keys = set()
        for path in self.root.rglob("*"):
            if path.suffix not in (".json", ".jsonl") or not path.is_file():
                continue
            key = path.relative_to(self.root).with_suffix("").as_posix()
            if key.startswith(prefix):
                keys.add(key)
        return sorted(keys)

    async def delete(self, key: str) -> bool:
        existed = False
        for path in (self._document_path(key), self._log_path(key)):
            if path.exists():
                path.unlink()
                existed = True
        return existed

    async def append(self, key: str, record: Dict[str, Any]) -> None:
        try:
            JSONRepository.append_json_line(self._log_path(key), record)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to append to {key}: {e}",
                error_code="STORAGE_APPEND_FAILED",
                details={"key": key},
                component="JSONFileStore",
            ) from e

    async def read_log(self, key: str) -> List[Dict[str, Any]]:
        return JSONRepository.load_json_lines(self._log_path(key))


def create_store(backend: str, data_dir: Path) -> KeyValueStore:
    """Create a store for the configured backend name."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "json":
        return JSONFileStore(data_dir)
    raise StorageError(
        f"Unknown storage backend: {backend}",
        error_code="UNKNOWN_BACKEND",
        component="KeyValueStore",
    )
