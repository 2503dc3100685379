"""Rolling and calendar-day flow averages used for dashboard trend indicators."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Mapping, Optional, Sequence

from models.records import SensorReading

WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class WindowAverage:
    average: Optional[float]
    samples: int


@dataclass(frozen=True)
class RollingComparison:
    average: Optional[float]
    samples: int
    previous_average: Optional[float]
    previous_samples: int

    @property
    def change_percent(self) -> Optional[float]:
        return percent_change(self.average, self.previous_average)


def _ensure_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _select(
    history: Mapping[str, Sequence[SensorReading]], sensor_id: Optional[str]
) -> List[SensorReading]:
    if sensor_id is not None:
        return list(history.get(sensor_id, ()))
    return [reading for entries in history.values() for reading in entries]


def _average_between(
    entries: Iterable[SensorReading], start: datetime, end: datetime
) -> WindowAverage:
    values = [entry.flow_rate for entry in entries if start <= entry.observed_at < end]
    if not values:
        return WindowAverage(average=None, samples=0)
    return WindowAverage(average=math.fsum(values) / len(values), samples=len(values))


def rolling_average(
    history: Mapping[str, Sequence[SensorReading]],
    sensor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RollingComparison:
    """Average flow over ``[now-24h, now)`` compared with ``[now-48h, now-24h)``."""
    reference = _ensure_aware(now or datetime.now(timezone.utc))
    entries = _select(history, sensor_id)
    current = _average_between(entries, reference - WINDOW, reference)
    previous = _average_between(entries, reference - 2 * WINDOW, reference - WINDOW)
    return RollingComparison(
        average=current.average,
        samples=current.samples,
        previous_average=previous.average,
        previous_samples=previous.samples,
    )


def calendar_yesterday_average(
    history: Mapping[str, Sequence[SensorReading]],
    sensor_id: Optional[str] = None,
    today: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> WindowAverage:
    """Average flow over the previous calendar day in ``tz`` (server local by default)."""
    reference = _ensure_aware(today or datetime.now(timezone.utc))
    local = reference.astimezone(tz) if tz is not None else reference.astimezone()
    day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday_start = day_start - timedelta(days=1)
    return _average_between(
        _select(history, sensor_id), yesterday_start, yesterday_start + WINDOW
    )


def percent_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Relative change in percent, ``None`` when there is nothing to compare against."""
    if current is None or previous is None or previous == 0:
        return None
    return (current - previous) / abs(previous) * 100.0
