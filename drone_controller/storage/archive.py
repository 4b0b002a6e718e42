"""Flight log archive on top of the key-value store.

Layout:
    @DroneController:flightLogs        JSON list of ids, newest first
    @DroneController:flightLog:<id>    one FlightLog record

Writes are ordered so a crash between two writes never leaves the index
pointing at a record that was never written: records are written before
they are indexed and unindexed before they are removed.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from drone_controller.exceptions import NotFoundError, StorageError
from drone_controller.recorder.models import FlightLog
from drone_controller.storage.settings import SETTINGS_KEY

if TYPE_CHECKING:
    from drone_controller.storage.store import KeyValueStore

logger = logging.getLogger(__name__)

FLIGHT_LOG_INDEX_KEY = "@DroneController:flightLogs"
FLIGHT_LOG_KEY_PREFIX = "@DroneController:flightLog:"


def flight_log_key(log_id: str) -> str:
    return f"{FLIGHT_LOG_KEY_PREFIX}{log_id}"


class LogArchive:
    """Persistent, newest-first collection of flight logs."""

    def __init__(self, store: KeyValueStore) -> None:
        """Initialize the archive.

        Args:
            store: Key-value persistence backend.
        """
        self._store = store

    def save(self, log: FlightLog) -> FlightLog:
        """Persist ``log`` and add it to the index.

        Saving an existing id replaces the record.

        Raises:
            StorageError: If either write fails.
        """
        self._store.set_item(flight_log_key(log.id), log.model_dump_json(by_alias=True))

        entries = [log] + [
            existing for existing in self._indexed_logs() if existing.id != log.id
        ]
        entries.sort(key=lambda entry: entry.start_time, reverse=True)
        self._write_index([entry.id for entry in entries])

        logger.info("Saved flight log %s (%s, %d samples)", log.id, log.name, log.sample_count)
        return log

    def list_logs(self) -> list[FlightLog]:
        """Return every readable log, newest first.

        Raises:
            StorageError: If the index cannot be read.
        """
        logs = self._indexed_logs()
        logs.sort(key=lambda entry: entry.start_time, reverse=True)
        return logs

    def get(self, log_id: str) -> FlightLog:
        """Return the log with ``log_id``.

        Raises:
            NotFoundError: If no readable record exists.
            StorageError: If the record cannot be read.
        """
        log = self._read_record(log_id)
        if log is None:
            raise NotFoundError("FlightLog", log_id)
        return log

    def delete(self, log_id: str) -> None:
        """Remove ``log_id`` from the index, then delete its record.

        Deleting an unknown id is a no-op.

        Raises:
            StorageError: If the index or record cannot be written.
        """
        index = self._read_index()
        if log_id in index:
            self._write_index([entry for entry in index if entry != log_id])
        self._store.remove_item(flight_log_key(log_id))
        logger.info("Deleted flight log %s", log_id)

    def clear(self) -> int:
        """Remove the index and every record under the log prefix.

        Returns:
            Number of records removed, orphans included.

        Raises:
            StorageError: If any key cannot be removed.
        """
        self._store.remove_item(FLIGHT_LOG_INDEX_KEY)
        record_keys = [key for key in self._store.get_all_keys() if key.startswith(FLIGHT_LOG_KEY_PREFIX)]
        for key in record_keys:
            self._store.remove_item(key)
        logger.info("Cleared %d flight logs", len(record_keys))
        return len(record_keys)

    def storage_usage(self) -> dict[str, int]:
        """Count stored items by kind.

        Raises:
            StorageError: If the key listing cannot be read.
        """
        keys = self._store.get_all_keys()
        return {
            "total_items": len(keys),
            "settings": sum(1 for key in keys if key == SETTINGS_KEY),
            "log_indexes": sum(1 for key in keys if key == FLIGHT_LOG_INDEX_KEY),
            "flight_logs": sum(1 for key in keys if key.startswith(FLIGHT_LOG_KEY_PREFIX)),
        }

    def _indexed_logs(self) -> list[FlightLog]:
        logs = []
        for log_id in self._read_index():
            log = self._read_record(log_id)
            if log is None:
                logger.warning("Flight log %s is indexed but missing or corrupt, skipping", log_id)
                continue
            logs.append(log)
        return logs

    def _read_index(self) -> list[str]:
        raw = self._store.get_item(FLIGHT_LOG_INDEX_KEY)
        if raw is None:
            return []
        try:
            index = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Flight log index is corrupt, treating as empty")
            return []
        if not isinstance(index, list):
            logger.warning("Flight log index is not a list, treating as empty")
            return []
        return [str(entry) for entry in index]

    def _read_record(self, log_id: str) -> FlightLog | None:
        raw = self._store.get_item(flight_log_key(log_id))
        if raw is None:
            return None
        try:
            return FlightLog.model_validate_json(raw)
        except ValidationError:
            logger.warning("Flight log %s record is corrupt", log_id, exc_info=True)
            return None

    def _write_index(self, index: list[str]) -> None:
        try:
            self._store.set_item(FLIGHT_LOG_INDEX_KEY, json.dumps(index))
        except StorageError:
            logger.exception("Failed to write flight log index")
            raise
