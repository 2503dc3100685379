"""Ingestion boundary: field resolution, unit conversion and volume policy.

Sensors always report in millilitres. This module is the only place where
values are converted to litres, so nothing downstream should divide by 1000
again.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple

from models.records import NormalizedMeasurement, SensorReading
from services.errors import InvalidMeasurement

logger = logging.getLogger(__name__)

ML_PER_LITRE = 1000.0
DECIMALS = 3

# Ordered lookups: the first key present with a non-null value wins.
SENSOR_ID_FIELDS: Tuple[str, ...] = ("sensor_id",)
FLOW_FIELDS: Tuple[str, ...] = ("caudal_min", "caudal", "flow", "value")
VOLUME_FIELDS: Tuple[str, ...] = ("total_acumulado", "total", "volume")
TIME_LABEL_FIELDS: Tuple[str, ...] = ("hora", "time")


class VolumePolicy(str, Enum):
    """How to treat negative values and decreasing accumulated volume."""

    accept = "accept"
    reject = "reject"
    clamp = "clamp"
    flag = "flag"


def resolve_field(
    payload: Mapping[str, Any], precedence: Sequence[str]
) -> Tuple[Optional[str], Any]:
    """Return ``(key, value)`` for the first key in ``precedence`` with a value."""
    for key in precedence:
        value = payload.get(key)
        if value is not None:
            return key, value
    return None, None


def _parse_decimal(raw: Any, field: str) -> float:
    if isinstance(raw, bool):
        raise InvalidMeasurement(f"{field} must be numeric", field=field)
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError as exc:
            raise InvalidMeasurement(f"{field} must be a finite number", field=field) from exc
    elif isinstance(raw, str):
        candidate = raw.strip()
        if not candidate:
            raise InvalidMeasurement(f"{field} must not be empty", field=field)
        try:
            value = float(candidate)
        except ValueError as exc:
            raise InvalidMeasurement(f"{field} must be numeric", field=field) from exc
    else:
        raise InvalidMeasurement(f"{field} must be numeric", field=field)

    if not math.isfinite(value):
        raise InvalidMeasurement(f"{field} must be a finite number", field=field)
    return value


def normalize(
    raw_flow: Any,
    raw_accum: Any,
    flow_field: str = "caudal_min",
    volume_field: str = "total_acumulado",
) -> NormalizedMeasurement:
    """Convert raw millilitre readings to litres rounded to three decimals."""
    flow_ml = _parse_decimal(raw_flow, flow_field)
    accum_ml = _parse_decimal(raw_accum, volume_field)
    return NormalizedMeasurement(
        flow_rate=round(flow_ml / ML_PER_LITRE, DECIMALS),
        accumulated_volume=round(accum_ml / ML_PER_LITRE, DECIMALS),
    )


def parse_payload(
    payload: Mapping[str, Any],
    observed_at: Optional[datetime] = None,
) -> SensorReading:
    """Validate an ingestion payload and build a normalized reading.

    Raises :class:`InvalidMeasurement` naming the first offending field.
    """
    _, sensor_raw = resolve_field(payload, SENSOR_ID_FIELDS)
    sensor_id = str(sensor_raw).strip() if sensor_raw is not None else ""
    if not sensor_id:
        raise InvalidMeasurement("sensor_id is required", field="sensor_id")

    flow_key, flow_raw = resolve_field(payload, FLOW_FIELDS)
    if flow_key is None:
        raise InvalidMeasurement("caudal_min is required", field="caudal_min")

    volume_key, volume_raw = resolve_field(payload, VOLUME_FIELDS)
    if volume_key is None:
        raise InvalidMeasurement("total_acumulado is required", field="total_acumulado")

    time_key, time_raw = resolve_field(payload, TIME_LABEL_FIELDS)
    if time_key is None:
        raise InvalidMeasurement("hora is required", field="hora")

    measurement = normalize(flow_raw, volume_raw, flow_field=flow_key, volume_field=volume_key)
    return SensorReading(
        sensor_id=sensor_id,
        flow_rate=measurement.flow_rate,
        accumulated_volume=measurement.accumulated_volume,
        time_label=str(time_raw),
        observed_at=observed_at or datetime.now(timezone.utc),
    )


def apply_volume_policy(
    reading: SensorReading,
    previous: Optional[SensorReading],
    policy: VolumePolicy,
) -> SensorReading:
    """Enforce ``policy`` on negative values and volume that went backwards."""
    if policy is VolumePolicy.accept:
        return reading

    negative_flow = reading.flow_rate < 0
    negative_volume = reading.accumulated_volume < 0
    decreasing = (
        previous is not None and reading.accumulated_volume < previous.accumulated_volume
    )

    if policy is VolumePolicy.reject:
        if negative_flow:
            raise InvalidMeasurement("caudal_min must not be negative", field="caudal_min")
        if negative_volume:
            raise InvalidMeasurement(
                "total_acumulado must not be negative", field="total_acumulado"
            )
        if decreasing:
            raise InvalidMeasurement(
                "total_acumulado must not decrease", field="total_acumulado"
            )
        return reading

    if policy is VolumePolicy.clamp:
        if not (negative_flow or negative_volume):
            return reading
        return replace(
            reading,
            flow_rate=max(reading.flow_rate, 0.0),
            accumulated_volume=max(reading.accumulated_volume, 0.0),
        )

    if negative_flow or negative_volume or decreasing:
        logger.warning(
            "Flagging suspicious sensor reading",
            extra={
                "sensor_id": reading.sensor_id,
                "reason": "decreasing volume" if decreasing else "negative value",
            },
        )
        return replace(reading, volume_fault=True)
    return reading
