"""Statistical summary of flow readings against a critical threshold."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from models.records import SensorReading

DISTRIBUTION_BINS = 6
MIN_BIN_WIDTH = 1e-9
ANOMALY_SIGMAS = 2.0


@dataclass(frozen=True)
class DistributionBin:
    range_low: float
    range_high: float
    count: int
    percent: float


@dataclass(frozen=True)
class Anomaly:
    sensor_id: str
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class StatisticsSummary:
    """Flow statistics for one slice of history. Computed fresh per request."""

    count: int
    mean: float
    min: float
    max: float
    std_dev: float
    exceeded_count: int
    normal_count: int
    percent_exceeded: float
    percent_normal: float
    sampling_interval_seconds: float
    time_outside_threshold_seconds: float
    threshold: float
    distribution: List[DistributionBin] = field(default_factory=list)
    anomalies: List[Anomaly] = field(default_factory=list)


def median(values: Sequence[float]) -> float:
    ordered = sorted(values)
    size = len(ordered)
    if size == 0:
        return 0.0
    middle = size // 2
    if size % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2.0


def mean_and_std(values: Sequence[float]) -> Tuple[float, float]:
    """Mean and population standard deviation of a non-empty sequence.

    Deviations are divided by the largest magnitude before squaring so that
    values near the float limit do not overflow.
    """
    count = len(values)
    scale = max(abs(value) for value in values)
    if scale == 0:
        return 0.0, 0.0
    try:
        mean = math.fsum(values) / count
    except OverflowError:
        mean = math.fsum(value / scale for value in values) / count * scale
    spread = math.fsum((value / scale - mean / scale) ** 2 for value in values) / count
    return mean, scale * math.sqrt(spread)


def estimate_sampling_interval(entries: Sequence[SensorReading]) -> float:
    """Median gap in seconds between consecutive observations.

    A heuristic: sparse or irregular data yields a rough figure.
    """
    timestamps = sorted(entry.observed_at for entry in entries)
    gaps = [
        (later - earlier).total_seconds()
        for earlier, later in zip(timestamps, timestamps[1:])
    ]
    return median(gaps)


def build_distribution(values: Sequence[float], bins: int = DISTRIBUTION_BINS) -> List[DistributionBin]:
    low = min(values)
    high = max(values)
    width = max((high - low) / bins, MIN_BIN_WIDTH)
    counts = [0] * bins
    for value in values:
        index = min(int((value - low) / width), bins - 1)
        counts[index] += 1

    total = len(values)
    return [
        DistributionBin(
            range_low=low + index * width,
            range_high=low + (index + 1) * width,
            count=count,
            percent=count * 100.0 / total,
        )
        for index, count in enumerate(counts)
    ]


class StatisticsEngine:
    """Pure statistics component; holds no state between calls."""

    def summarize(
        self, entries: Sequence[SensorReading], threshold: float
    ) -> Optional[StatisticsSummary]:
        if not entries:
            return None

        values = [entry.flow_rate for entry in entries]
        count = len(values)
        mean, std_dev = mean_and_std(values)

        exceeded_count = sum(1 for value in values if value > threshold)
        normal_count = count - exceeded_count
        interval = estimate_sampling_interval(entries)

        statistical_limit = mean + ANOMALY_SIGMAS * std_dev
        anomalies = [
            Anomaly(sensor_id=entry.sensor_id, timestamp=entry.observed_at, value=entry.flow_rate)
            for entry in entries
            if entry.flow_rate > threshold or entry.flow_rate > statistical_limit
        ]

        return StatisticsSummary(
            count=count,
            mean=mean,
            min=min(values),
            max=max(values),
            std_dev=std_dev,
            exceeded_count=exceeded_count,
            normal_count=normal_count,
            percent_exceeded=exceeded_count * 100.0 / count,
            percent_normal=normal_count * 100.0 / count,
            sampling_interval_seconds=interval,
            time_outside_threshold_seconds=exceeded_count * interval,
            threshold=threshold,
            distribution=build_distribution(values),
            anomalies=anomalies,
        )
