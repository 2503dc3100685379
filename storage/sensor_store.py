from __future__ import annotations

from collections import deque
from dataclasses import replace
from threading import Lock
from typing import Callable, Deque, Dict, List, Optional

from models.records import SensorReading, StoreSnapshot
from services.errors import UnknownSensor

MAX_HISTORY = 500


class SensorStore:
    """Latest reading plus a bounded arrival-ordered history for each sensor."""

    def __init__(self, history_limit: int = MAX_HISTORY, storage_tag: str = "memory") -> None:
        if history_limit <= 0:
            raise ValueError("history_limit must be positive.")
        self.history_limit = history_limit
        self.storage_tag = storage_tag
        self._latest: Dict[str, SensorReading] = {}
        self._history: Dict[str, Deque[SensorReading]] = {}
        self._lock = Lock()

    def ingest(self, reading: SensorReading) -> SensorReading:
        with self._lock:
            return self._append(reading)

    def ingest_checked(
        self,
        reading: SensorReading,
        check: Callable[[SensorReading, Optional[SensorReading]], SensorReading],
    ) -> SensorReading:
        """Run ``check(reading, previous)`` and store its result atomically.

        ``check`` sees the sensor's current latest reading and may return a
        replacement or raise to refuse it. It must not call back into the store.
        """
        with self._lock:
            previous = self._latest.get(reading.sensor_id)
            return self._append(check(reading, previous))

    def _append(self, reading: SensorReading) -> SensorReading:
        tagged = replace(reading, storage_tag=self.storage_tag)
        self._latest[tagged.sensor_id] = tagged
        history = self._history.get(tagged.sensor_id)
        if history is None:
            history = deque(maxlen=self.history_limit)
            self._history[tagged.sensor_id] = history
        history.append(tagged)
        return tagged

    def latest_all(self) -> List[SensorReading]:
        with self._lock:
            return list(self._latest.values())

    def latest_for(self, sensor_id: str) -> SensorReading:
        with self._lock:
            reading = self._latest.get(sensor_id)
        if reading is None:
            raise UnknownSensor(f"Sensor {sensor_id!r} has not reported yet.")
        return reading

    def history_for(self, sensor_id: str) -> List[SensorReading]:
        with self._lock:
            return list(self._history.get(sensor_id, ()))

    def history_all(self) -> Dict[str, List[SensorReading]]:
        with self._lock:
            return {sensor_id: list(entries) for sensor_id, entries in self._history.items()}

    def sensor_count(self) -> int:
        with self._lock:
            return len(self._latest)

    def snapshot(self) -> StoreSnapshot:
        """Consistent copy of all state, safe to serialize outside the lock."""
        with self._lock:
            return StoreSnapshot(
                state=dict(self._latest),
                history={
                    sensor_id: list(entries) for sensor_id, entries in self._history.items()
                },
            )

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Replace all contents with ``snapshot``, trimming histories to the cap."""
        with self._lock:
            self._latest = dict(snapshot.state)
            self._history = {
                sensor_id: deque(entries, maxlen=self.history_limit)
                for sensor_id, entries in snapshot.history.items()
            }
