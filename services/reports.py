"""Report synthesis: structured summary, CSV documents and diagnostic narrative."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from models.records import SensorReading
from services.errors import InsufficientData
from services.statistics import StatisticsEngine, StatisticsSummary

if TYPE_CHECKING:
    from services.rendering import DocumentRenderer

logger = logging.getLogger(__name__)

BOM = "\ufeff"
ROW_COLUMNS = (
    "timestamp",
    "sensor_id",
    "display_time",
    "flow_rate",
    "accumulated_volume",
    "storage",
)
FLAT_EXPORT_COLUMNS = ("timestamp", "sensor_id", "hora", "caudal_min", "total_acumulado", "storage")

NARRATIVE_TEMPLATE = (
    "Automated diagnostic: {percent_normal:.1f}% of {count} readings stayed at or below "
    "the critical limit of {threshold:.3f} L/min. {exceeded_count} readings exceeded it, "
    "an estimated {outside_seconds:.0f} s outside the threshold "
    "(sampling interval ~{interval:.1f} s). Mean flow {mean:.3f} L/min "
    "(sigma {std_dev:.3f}). Peak flow {peak_value:.3f} L/min from sensor {peak_sensor} "
    "at {peak_time}. {anomaly_count} readings were flagged as anomalies."
)


class ReportFormat(str, Enum):
    structured = "structured"
    csv = "csv"
    full = "full"


@dataclass
class ReportArtifact:
    title: str
    generated_at: datetime
    summary: StatisticsSummary
    rows: List[Dict[str, Any]]
    narrative: str
    peak: SensorReading
    csv: Optional[str] = None
    pdf: Optional[bytes] = None
    entries: List[SensorReading] = field(default_factory=list)


def entry_row(entry: SensorReading) -> Dict[str, Any]:
    return {
        "timestamp": entry.observed_at.isoformat(),
        "sensor_id": entry.sensor_id,
        "display_time": entry.time_label,
        "flow_rate": entry.flow_rate,
        "accumulated_volume": entry.accumulated_volume,
        "storage": entry.storage_tag,
    }


def render_narrative(summary: StatisticsSummary, peak: SensorReading) -> str:
    return NARRATIVE_TEMPLATE.format(
        percent_normal=summary.percent_normal,
        count=summary.count,
        threshold=summary.threshold,
        exceeded_count=summary.exceeded_count,
        outside_seconds=summary.time_outside_threshold_seconds,
        interval=summary.sampling_interval_seconds,
        mean=summary.mean,
        std_dev=summary.std_dev,
        peak_value=peak.flow_rate,
        peak_sensor=peak.sensor_id,
        peak_time=peak.observed_at.isoformat(timespec="seconds"),
        anomaly_count=len(summary.anomalies),
    )


def render_report_csv(
    title: str,
    generated_at: datetime,
    summary: StatisticsSummary,
    rows: Sequence[Mapping[str, Any]],
) -> str:
    """Header line, metrics block, distribution block, raw data table."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    writer.writerow(["report", title, "generated_at", generated_at.isoformat()])
    writer.writerow([])

    writer.writerow(["metric", "value"])
    for name, value in (
        ("count", summary.count),
        ("mean", summary.mean),
        ("min", summary.min),
        ("max", summary.max),
        ("std_dev", summary.std_dev),
        ("threshold", summary.threshold),
        ("exceeded_count", summary.exceeded_count),
        ("normal_count", summary.normal_count),
        ("percent_exceeded", summary.percent_exceeded),
        ("percent_normal", summary.percent_normal),
        ("sampling_interval_seconds", summary.sampling_interval_seconds),
        ("time_outside_threshold_seconds", summary.time_outside_threshold_seconds),
        ("anomaly_count", len(summary.anomalies)),
    ):
        writer.writerow([name, value])
    writer.writerow([])

    writer.writerow(["range_low", "range_high", "count", "percent"])
    for bucket in summary.distribution:
        writer.writerow([bucket.range_low, bucket.range_high, bucket.count, bucket.percent])
    writer.writerow([])

    writer.writerow(ROW_COLUMNS)
    for row in rows:
        writer.writerow([row[column] for column in ROW_COLUMNS])

    return BOM + buffer.getvalue()


def render_flat_export(history: Mapping[str, Sequence[SensorReading]]) -> str:
    """Plain export of every stored reading, oldest first per sensor."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(FLAT_EXPORT_COLUMNS)
    for sensor_id in sorted(history):
        for entry in history[sensor_id]:
            writer.writerow(
                [
                    entry.observed_at.isoformat(),
                    entry.sensor_id,
                    entry.time_label,
                    entry.flow_rate,
                    entry.accumulated_volume,
                    entry.storage_tag,
                ]
            )
    return BOM + buffer.getvalue()


class ReportSynthesizer:
    """Turns a slice of history into a report artifact, all or nothing."""

    def __init__(
        self,
        engine: Optional[StatisticsEngine] = None,
        renderer: Optional["DocumentRenderer"] = None,
    ) -> None:
        self.engine = engine or StatisticsEngine()
        self.renderer = renderer

    def build_report(
        self,
        entries: Sequence[SensorReading],
        threshold: float,
        fmt: ReportFormat = ReportFormat.full,
        title: str = "Water flow report",
        generated_at: Optional[datetime] = None,
    ) -> ReportArtifact:
        summary = self.engine.summarize(entries, threshold)
        if summary is None:
            raise InsufficientData("No readings available for the requested selection.")

        ordered = sorted(entries, key=lambda entry: entry.observed_at)
        # First occurrence of the maximum in time order.
        peak = max(ordered, key=lambda entry: entry.flow_rate)
        rows = [entry_row(entry) for entry in ordered]
        artifact = ReportArtifact(
            title=title,
            generated_at=generated_at or datetime.now(timezone.utc),
            summary=summary,
            rows=rows,
            narrative=render_narrative(summary, peak),
            peak=peak,
            entries=ordered,
        )

        if fmt in (ReportFormat.csv, ReportFormat.full):
            artifact.csv = render_report_csv(title, artifact.generated_at, summary, rows)
        if fmt is ReportFormat.full and self.renderer is not None:
            artifact.pdf = self.renderer.render(artifact)

        logger.info(
            "Report built",
            extra={"entry_count": summary.count, "threshold": threshold, "status": fmt.value},
        )
        return artifact
