from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Any

from datastore.backends import SnapshotBackend, decode_snapshot, encode_snapshot
from models.records import StoreSnapshot
from services.errors import PersistenceFailure

SENSORS_FILENAME = "sensors.json"
HISTORY_FILENAME = "history.json"


class JsonFileBackend(SnapshotBackend):
    """Two JSON documents, overwritten wholesale on every save."""

    name = "file"

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.sensors_path = directory / SENSORS_FILENAME
        self.history_path = directory / HISTORY_FILENAME
        self._lock = Lock()

    def save(self, snapshot: StoreSnapshot) -> None:
        state, history = encode_snapshot(snapshot)
        with self._lock:
            try:
                self.directory.mkdir(parents=True, exist_ok=True)
                self.sensors_path.write_text(json.dumps(state, indent=2, sort_keys=True))
                self.history_path.write_text(json.dumps(history, indent=2, sort_keys=True))
            except OSError as exc:
                raise PersistenceFailure(
                    f"Could not write snapshot to {self.directory}: {exc}"
                ) from exc

    def load(self) -> StoreSnapshot:
        with self._lock:
            state = self._read_document(self.sensors_path)
            history = self._read_document(self.history_path)
        return decode_snapshot(state, history)

    def is_connected(self) -> bool:
        return False

    @staticmethod
    def _read_document(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            raw = path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Could not read snapshot file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceFailure(f"Snapshot file {path} does not contain an object.")
        return data
