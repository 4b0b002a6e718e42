"""Key-value persistence capability.

The controller core only needs string values under string keys, the
same contract as a mobile app's async key-value storage. Any backend
that implements ``KeyValueStore`` can be plugged in.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from drone_controller.exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String-to-string persistent map."""

    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent.

        Raises:
            StorageError: If the backend cannot be read.
        """
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Raises:
            StorageError: If the backend cannot be written.
        """
        ...

    def remove_item(self, key: str) -> None:
        """Remove ``key``; absent keys are ignored.

        Raises:
            StorageError: If the backend cannot be written.
        """
        ...

    def get_all_keys(self) -> list[str]:
        ...


class InMemoryKeyValueStore:
    """Volatile store for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def get_all_keys(self) -> list[str]:
        with self._lock:
            return list(self._items)


class JsonFileKeyValueStore:
    """Store backed by a single JSON object on disk.

    Every write replaces the file atomically (temp file + ``os.replace``),
    so a crash mid-write leaves either the old or the new document.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialize the store.

        Args:
            path: JSON file location; created on first write.
        """
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._load(key=key).get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load(key=key)
            items[key] = value
            self._write(items, key=key)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._load(key=key)
            if items.pop(key, None) is not None:
                self._write(items, key=key)

    def get_all_keys(self) -> list[str]:
        with self._lock:
            return list(self._load())

    def _load(self, *, key: str | None = None) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            raise StorageError(f"Cannot read store {self._path}: {error}", key=key) from error
        if not isinstance(document, dict):
            raise StorageError(f"Store {self._path} does not contain a JSON object", key=key)
        return {str(item_key): str(item_value) for item_key, item_value in document.items()}

    def _write(self, items: dict[str, str], *, key: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            file_descriptor, temporary_name = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(file_descriptor, "w", encoding="utf-8") as handle:
                    json.dump(items, handle, indent=2, sort_keys=True)
                os.replace(temporary_name, self._path)
            except BaseException:
                Path(temporary_name).unlink(missing_ok=True)
                raise
        except OSError as error:
            raise StorageError(f"Cannot write store {self._path}: {error}", key=key) from error
        logger.debug("Persisted %d keys to %s", len(items), self._path)
