"""Persistence backends that mirror the sensor store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from models.records import SensorReading, StoreSnapshot
from services.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class SnapshotBackend:
    """Save and load whole-store snapshots.

    Implementations raise :class:`PersistenceFailure` for any I/O or decoding
    problem so the snapshot scheduler can treat every backend the same way.
    """

    name = "base"
    persistent = True

    def save(self, snapshot: StoreSnapshot) -> None:
        raise NotImplementedError

    def load(self) -> StoreSnapshot:
        raise NotImplementedError

    def is_connected(self) -> bool:
        return False

    def close(self) -> None:
        """Release backend resources."""


class InMemoryBackend(SnapshotBackend):
    """Keeps nothing: data lives only in the store and is lost on restart."""

    name = "memory"
    persistent = False

    def save(self, snapshot: StoreSnapshot) -> None:
        return None

    def load(self) -> StoreSnapshot:
        return StoreSnapshot()


def encode_snapshot(snapshot: StoreSnapshot) -> tuple[Dict[str, Any], Dict[str, List[Any]]]:
    """Split a snapshot into the latest-state and history JSON documents."""
    state = {sensor_id: reading.to_payload() for sensor_id, reading in snapshot.state.items()}
    history = {
        sensor_id: [reading.to_payload() for reading in entries]
        for sensor_id, entries in snapshot.history.items()
    }
    return state, history


def decode_snapshot(state: Mapping[str, Any], history: Mapping[str, Any]) -> StoreSnapshot:
    try:
        decoded_state = {
            str(sensor_id): SensorReading.from_payload(payload)
            for sensor_id, payload in state.items()
        }
        decoded_history = {
            str(sensor_id): [SensorReading.from_payload(payload) for payload in entries]
            for sensor_id, entries in history.items()
        }
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise PersistenceFailure(f"Malformed snapshot record: {exc}") from exc
    return StoreSnapshot(state=decoded_state, history=decoded_history)
