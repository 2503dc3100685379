"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping


@dataclass(frozen=True, slots=True)
class NormalizedMeasurement:
    """Flow and volume after conversion from millilitres to litres."""

    flow_rate: float
    accumulated_volume: float


@dataclass(frozen=True, slots=True)
class SensorReading:
    """A single normalized reading as accepted by the ingestion endpoint."""

    sensor_id: str
    flow_rate: float
    accumulated_volume: float
    time_label: str
    observed_at: datetime
    storage_tag: str = "memory"
    volume_fault: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """Serialize using the field names the sensor firmware and dashboard speak."""
        payload: Dict[str, Any] = {
            "sensor_id": self.sensor_id,
            "caudal_min": self.flow_rate,
            "total_acumulado": self.accumulated_volume,
            "hora": self.time_label,
            "ultima_actualizacion": self.observed_at.isoformat(),
            "storage": self.storage_tag,
        }
        if self.volume_fault:
            payload["volume_fault"] = True
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SensorReading":
        """Rebuild a reading from :meth:`to_payload` output.

        Raises ``KeyError``/``ValueError``/``TypeError`` on malformed payloads.
        """
        observed_at = datetime.fromisoformat(str(payload["ultima_actualizacion"]))
        if observed_at.tzinfo is None:
            observed_at = observed_at.replace(tzinfo=timezone.utc)
        return cls(
            sensor_id=str(payload["sensor_id"]),
            flow_rate=float(payload["caudal_min"]),
            accumulated_volume=float(payload["total_acumulado"]),
            time_label=str(payload.get("hora", "")),
            observed_at=observed_at,
            storage_tag=str(payload.get("storage", "memory")),
            volume_fault=bool(payload.get("volume_fault", False)),
        )


@dataclass
class StoreSnapshot:
    """Point-in-time copy of the sensor store, the unit of persistence."""

    state: Dict[str, SensorReading] = field(default_factory=dict)
    history: Dict[str, List[SensorReading]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.state and not self.history
