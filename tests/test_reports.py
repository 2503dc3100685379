"""Unit tests for report synthesis and PDF rendering."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timedelta, timezone

import pytest

from models.records import SensorReading
from services.errors import InsufficientData
from services.rendering import MatplotlibPdfRenderer
from services.reports import (
    BOM,
    ReportArtifact,
    ReportFormat,
    ReportSynthesizer,
    render_flat_export,
)

BASE = datetime(2024, 2, 1, 6, 0, tzinfo=timezone.utc)
GENERATED = datetime(2024, 2, 2, 0, 0, tzinfo=timezone.utc)


def _entries(values, sensor_id: str = "1") -> list[SensorReading]:
    return [
        SensorReading(
            sensor_id=sensor_id,
            flow_rate=value,
            accumulated_volume=10.0 + index,
            time_label=f"06:{index:02d}",
            observed_at=BASE + timedelta(minutes=index),
            storage_tag="file",
        )
        for index, value in enumerate(values)
    ]


class RecordingRenderer:
    def __init__(self) -> None:
        self.artifacts: list[ReportArtifact] = []

    def render(self, artifact: ReportArtifact) -> bytes:
        self.artifacts.append(artifact)
        return b"%PDF-stub"


def _sections(document: str) -> list[list[list[str]]]:
    rows = list(csv.reader(io.StringIO(document[len(BOM):])))
    sections: list[list[list[str]]] = [[]]
    for row in rows:
        if not row:
            sections.append([])
        else:
            sections[-1].append(row)
    return sections


def test_build_report_rejects_empty_entries() -> None:
    renderer = RecordingRenderer()
    synthesizer = ReportSynthesizer(renderer=renderer)

    with pytest.raises(InsufficientData):
        synthesizer.build_report([], 0.012)

    assert renderer.artifacts == []


def test_csv_sections_follow_fixed_order() -> None:
    entries = _entries([1, 1, 1, 1, 1, 1, 1, 1, 1, 20])

    artifact = ReportSynthesizer().build_report(
        entries, 5.0, fmt=ReportFormat.csv, title="Sensor 1", generated_at=GENERATED
    )

    assert artifact.csv is not None
    assert artifact.csv.startswith(BOM)
    header, metrics, distribution, table = _sections(artifact.csv)
    assert header == [["report", "Sensor 1", "generated_at", GENERATED.isoformat()]]
    assert metrics[0] == ["metric", "value"]
    metric_values = dict(metrics[1:])
    assert metric_values["count"] == "10"
    assert metric_values["exceeded_count"] == "1"
    assert float(metric_values["percent_exceeded"]) == 10.0
    assert distribution[0] == ["range_low", "range_high", "count", "percent"]
    assert len(distribution) == 7
    assert table[0] == [
        "timestamp",
        "sensor_id",
        "display_time",
        "flow_rate",
        "accumulated_volume",
        "storage",
    ]
    assert len(table) == 11
    assert table[-1][1:] == ["1", "06:09", "20", "19.0", "file"]


def test_structured_format_skips_documents() -> None:
    renderer = RecordingRenderer()

    artifact = ReportSynthesizer(renderer=renderer).build_report(
        _entries([1.0, 2.0]), 1.5, fmt=ReportFormat.structured
    )

    assert artifact.csv is None
    assert artifact.pdf is None
    assert renderer.artifacts == []
    assert len(artifact.rows) == 2


def test_full_format_delegates_pdf_to_renderer() -> None:
    renderer = RecordingRenderer()

    artifact = ReportSynthesizer(renderer=renderer).build_report(_entries([1.0, 2.0]), 1.5)

    assert artifact.pdf == b"%PDF-stub"
    assert renderer.artifacts == [artifact]
    assert artifact.csv is not None


def test_narrative_interpolates_statistics() -> None:
    entries = _entries([1, 1, 1, 1, 1, 1, 1, 1, 1, 20])

    artifact = ReportSynthesizer().build_report(entries, 5.0, fmt=ReportFormat.structured)

    assert "90.0% of 10 readings" in artifact.narrative
    assert "critical limit of 5.000 L/min" in artifact.narrative
    assert "1 readings exceeded it" in artifact.narrative
    assert "Peak flow 20.000 L/min from sensor 1" in artifact.narrative
    assert artifact.peak.flow_rate == 20
    assert artifact.peak.observed_at.isoformat(timespec="seconds") in artifact.narrative


def test_rows_are_time_ordered() -> None:
    entries = list(reversed(_entries([3.0, 2.0, 1.0])))

    artifact = ReportSynthesizer().build_report(entries, 10.0, fmt=ReportFormat.structured)

    assert [row["flow_rate"] for row in artifact.rows] == [3.0, 2.0, 1.0]
    assert artifact.rows[0]["display_time"] == "06:00"


def test_flat_export_lists_every_reading() -> None:
    history = {"2": _entries([4.0], sensor_id="2"), "1": _entries([1.0, 2.0])}

    document = render_flat_export(history)

    rows = list(csv.reader(io.StringIO(document[len(BOM):])))
    assert document.startswith(BOM)
    assert rows[0] == ["timestamp", "sensor_id", "hora", "caudal_min", "total_acumulado", "storage"]
    assert [row[1] for row in rows[1:]] == ["1", "1", "2"]


def test_flat_export_with_no_history_is_header_only() -> None:
    rows = list(csv.reader(io.StringIO(render_flat_export({})[len(BOM):])))

    assert len(rows) == 1


def test_matplotlib_renderer_produces_pdf() -> None:
    entries = _entries([1.0, 2.5, 0.5, 7.0, 1.5]) + _entries([2.0, 3.0], sensor_id="2")

    artifact = ReportSynthesizer(renderer=MatplotlibPdfRenderer()).build_report(entries, 5.0)

    assert artifact.pdf is not None
    assert artifact.pdf.startswith(b"%PDF")
    assert len(artifact.pdf) > 1000


def _bar_centres(figure) -> list[float]:
    return [patch.get_x() + patch.get_width() / 2 for patch in figure.axes[0].patches]


def test_distribution_chart_keeps_narrow_bins_apart() -> None:
    flows = [0.001, 0.002, 0.003, 0.004, 0.005, 0.006, 0.007, 0.008, 0.009, 0.010, 0.011, 0.012]
    artifact = ReportSynthesizer().build_report(
        _entries(flows), 0.012, fmt=ReportFormat.structured
    )

    figure = MatplotlibPdfRenderer._distribution(artifact)

    ax = figure.axes[0]
    labels = [label.get_text() for label in ax.get_xticklabels()]
    assert len(set(_bar_centres(figure))) == 6
    assert list(ax.get_xticks()) == [0, 1, 2, 3, 4, 5]
    assert len(set(labels)) == 6


def test_distribution_chart_with_identical_values_has_six_bars() -> None:
    artifact = ReportSynthesizer().build_report(
        _entries([0.012, 0.012, 0.012]), 0.012, fmt=ReportFormat.structured
    )

    figure = MatplotlibPdfRenderer._distribution(artifact)

    assert len(set(_bar_centres(figure))) == 6
    assert len(figure.axes[0].get_xticks()) == 6
