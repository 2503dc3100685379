"""Synthetic ESP32 traffic for exercising a running monitor."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

DEFAULT_SENSORS = (("1", 50.0), ("2", 10.0), ("3", 200.0))


@dataclass
class SimulatedSensor:
    sensor_id: str
    total_litres: float


class SensorSimulator:
    """Produces payloads in millilitres, the unit real sensors report in."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = random.Random(seed)
        self.sensors: List[SimulatedSensor] = [
            SimulatedSensor(sensor_id=sensor_id, total_litres=total)
            for sensor_id, total in DEFAULT_SENSORS
        ]

    def next_payload(self, sensor: SimulatedSensor, now: Optional[datetime] = None) -> Dict[str, str]:
        flow_litres = round(self._rng.uniform(2.0, 14.0), 1)
        sensor.total_litres = round(sensor.total_litres + self._rng.random() * 3, 1)
        moment = now or datetime.now()
        return {
            "sensor_id": sensor.sensor_id,
            "caudal_min": str(round(flow_litres * 1000)),
            "total_acumulado": str(round(sensor.total_litres * 1000)),
            "hora": moment.strftime("%Y-%m-%d %H:%M:%S"),
        }

    def tick(self, now: Optional[datetime] = None) -> List[Dict[str, str]]:
        return [self.next_payload(sensor, now=now) for sensor in self.sensors]
