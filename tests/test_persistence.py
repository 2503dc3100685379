"""Tests for the snapshot backends."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from datastore.backends import InMemoryBackend
from datastore.file_backend import JsonFileBackend
from datastore.sql_backend import SqlBackend
from models.records import SensorReading, StoreSnapshot
from services.errors import PersistenceFailure
from storage.sensor_store import SensorStore

BASE = datetime(2024, 4, 1, 10, 0, tzinfo=timezone.utc)


def _populated_snapshot(tag: str) -> StoreSnapshot:
    store = SensorStore(storage_tag=tag)
    for index in range(3):
        store.ingest(
            SensorReading(
                sensor_id="1",
                flow_rate=1.5 + index,
                accumulated_volume=50.0 + index,
                time_label=f"10:0{index}",
                observed_at=BASE + timedelta(seconds=5 * index),
            )
        )
    store.ingest(
        SensorReading(
            sensor_id="2",
            flow_rate=0.25,
            accumulated_volume=10.0,
            time_label="10:00",
            observed_at=BASE,
            volume_fault=True,
        )
    )
    return store.snapshot()


def test_in_memory_backend_is_a_no_op() -> None:
    backend = InMemoryBackend()

    backend.save(_populated_snapshot("memory"))

    assert backend.load().is_empty()
    assert backend.is_connected() is False
    assert backend.persistent is False


def test_json_backend_round_trip(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path / "data")
    snapshot = _populated_snapshot("file")

    backend.save(snapshot)

    sensors = json.loads((tmp_path / "data" / "sensors.json").read_text())
    history = json.loads((tmp_path / "data" / "history.json").read_text())
    assert sensors["1"]["caudal_min"] == 3.5
    assert sensors["1"]["storage"] == "file"
    assert len(history["1"]) == 3

    restored = JsonFileBackend(tmp_path / "data").load()
    assert restored == snapshot
    assert restored.state["2"].volume_fault is True


def test_json_backend_missing_files_load_empty(tmp_path: Path) -> None:
    assert JsonFileBackend(tmp_path / "nothing-here").load().is_empty()


def test_json_backend_corrupt_file_raises_persistence_failure(tmp_path: Path) -> None:
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "sensors.json").write_text("{not json")

    with pytest.raises(PersistenceFailure):
        JsonFileBackend(directory).load()


def test_json_backend_malformed_record_raises_persistence_failure(tmp_path: Path) -> None:
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "sensors.json").write_text(json.dumps({"1": {"sensor_id": "1"}}))

    with pytest.raises(PersistenceFailure):
        JsonFileBackend(directory).load()


def test_json_backend_unwritable_directory_raises_persistence_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file where a directory should be")

    with pytest.raises(PersistenceFailure):
        JsonFileBackend(blocker / "data").save(_populated_snapshot("file"))


def test_sql_backend_round_trip(tmp_path: Path) -> None:
    backend = SqlBackend(f"sqlite:///{tmp_path / 'monitor.db'}")
    snapshot = _populated_snapshot("sql")

    try:
        backend.save(snapshot)
        backend.save(snapshot)
        restored = backend.load()
        assert backend.is_connected() is True
    finally:
        backend.close()

    assert restored == snapshot
    assert [entry.flow_rate for entry in restored.history["1"]] == [1.5, 2.5, 3.5]


def test_sql_backend_empty_database_loads_empty(tmp_path: Path) -> None:
    backend = SqlBackend(f"sqlite:///{tmp_path / 'empty.db'}")
    try:
        assert backend.load().is_empty()
    finally:
        backend.close()


def test_sql_backend_creates_missing_sqlite_directory(tmp_path: Path) -> None:
    backend = SqlBackend(f"sqlite:///{tmp_path / 'nested' / 'monitor.db'}")
    try:
        backend.save(_populated_snapshot("sql"))
    finally:
        backend.close()

    assert (tmp_path / "nested" / "monitor.db").exists()


def test_sql_backend_unreachable_database_raises_persistence_failure(tmp_path: Path) -> None:
    # A directory cannot be opened as a database file.
    backend = SqlBackend(f"sqlite:///{tmp_path}")
    try:
        with pytest.raises(PersistenceFailure):
            backend.save(_populated_snapshot("sql"))
        assert backend.is_connected() is False
    finally:
        backend.close()
