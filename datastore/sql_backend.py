"""Relational snapshot backend built on SQLAlchemy Core."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from datastore.backends import SnapshotBackend, decode_snapshot
from models.records import StoreSnapshot
from services.errors import PersistenceFailure

logger = logging.getLogger(__name__)

metadata = MetaData()

sensors_table = Table(
    "sensors",
    metadata,
    Column("sensor_id", String(64), primary_key=True),
    Column("last_seen", DateTime(timezone=True), nullable=False),
    Column("caudal_min", Float, nullable=False),
    Column("total_acumulado", Float, nullable=False),
    Column("raw_json", Text, nullable=False),
)

history_table = Table(
    "history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sensor_id", String(64), nullable=False, index=True),
    Column("ts", DateTime(timezone=True), nullable=False),
    Column("payload", Text, nullable=False),
)


class SqlBackend(SnapshotBackend):
    """Replaces the ``sensors`` and ``history`` tables in one transaction per save."""

    name = "sql"

    def __init__(self, url: str, engine: Optional[Engine] = None) -> None:
        self.url = url
        self.engine = engine or create_engine(url, pool_pre_ping=True, future=True)
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        _ensure_sqlite_directory(self.url)
        metadata.create_all(self.engine)
        self._schema_ready = True

    def save(self, snapshot: StoreSnapshot) -> None:
        sensor_rows = [
            {
                "sensor_id": sensor_id,
                "last_seen": reading.observed_at,
                "caudal_min": reading.flow_rate,
                "total_acumulado": reading.accumulated_volume,
                "raw_json": json.dumps(reading.to_payload(), sort_keys=True),
            }
            for sensor_id, reading in snapshot.state.items()
        ]
        history_rows = [
            {
                "sensor_id": sensor_id,
                "ts": reading.observed_at,
                "payload": json.dumps(reading.to_payload(), sort_keys=True),
            }
            for sensor_id, entries in snapshot.history.items()
            for reading in entries
        ]
        try:
            self._ensure_schema()
            with self.engine.begin() as conn:
                conn.execute(delete(history_table))
                conn.execute(delete(sensors_table))
                if sensor_rows:
                    conn.execute(insert(sensors_table), sensor_rows)
                if history_rows:
                    conn.execute(insert(history_table), history_rows)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Could not write snapshot to database: {exc}") from exc

    def load(self) -> StoreSnapshot:
        state: Dict[str, object] = {}
        history: Dict[str, List[object]] = {}
        try:
            self._ensure_schema()
            with self.engine.connect() as conn:
                for row in conn.execute(select(sensors_table.c.sensor_id, sensors_table.c.raw_json)):
                    state[row.sensor_id] = json.loads(row.raw_json)
                query = select(history_table.c.sensor_id, history_table.c.payload).order_by(
                    history_table.c.id
                )
                for row in conn.execute(query):
                    history.setdefault(row.sensor_id, []).append(json.loads(row.payload))
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Could not read snapshot from database: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(f"Malformed JSON stored in database: {exc}") from exc
        return decode_snapshot(state, history)

    def is_connected(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", extra={"backend": self.name})
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def _ensure_sqlite_directory(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite" or parsed.database in (None, "", ":memory:"):
        return
    Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
