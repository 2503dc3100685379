"""PDF rendering of report artifacts."""

from __future__ import annotations

import io
import math
from typing import Protocol

import matplotlib

matplotlib.use("Agg")

from matplotlib.backends.backend_pdf import PdfPages  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402
import matplotlib.dates as mdates  # noqa: E402

from services.reports import ReportArtifact  # noqa: E402

A4_PORTRAIT = (8.27, 11.69)
LANDSCAPE = (11, 6)
MAX_LABEL_DECIMALS = 6


class DocumentRenderer(Protocol):
    def render(self, artifact: ReportArtifact) -> bytes:
        ...


class MatplotlibPdfRenderer:
    """Summary page, flow time series and distribution chart in one PDF.

    Uses ``Figure`` objects directly so rendering does not touch pyplot's
    global state and can run from request worker threads.
    """

    def render(self, artifact: ReportArtifact) -> bytes:
        buffer = io.BytesIO()
        with PdfPages(buffer) as pdf:
            pdf.savefig(self._summary_page(artifact), bbox_inches="tight")
            pdf.savefig(self._time_series(artifact), bbox_inches="tight")
            pdf.savefig(self._distribution(artifact), bbox_inches="tight")
        return buffer.getvalue()

    @staticmethod
    def _summary_page(artifact: ReportArtifact) -> Figure:
        summary = artifact.summary
        figure = Figure(figsize=A4_PORTRAIT)
        ax = figure.add_subplot(111)
        ax.axis("off")
        lines = [
            f"Generated: {artifact.generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
            "",
            "STATISTICS",
            f"Samples: {summary.count}",
            f"Mean flow: {summary.mean:.3f} L/min",
            f"Min / max: {summary.min:.3f} / {summary.max:.3f} L/min",
            f"Standard deviation: {summary.std_dev:.3f}",
            f"Critical limit: {summary.threshold:.3f} L/min",
            f"Exceeded: {summary.exceeded_count} ({summary.percent_exceeded:.1f}%)",
            f"Normal: {summary.normal_count} ({summary.percent_normal:.1f}%)",
            f"Estimated time outside limit: {summary.time_outside_threshold_seconds:.0f} s",
            f"Anomalies: {len(summary.anomalies)}",
            "",
            "DIAGNOSTIC",
        ]
        figure.text(0.05, 0.95, artifact.title, fontsize=16, weight="bold")
        y = 0.91
        for line in lines:
            figure.text(0.05, y, line, fontsize=10)
            y -= 0.028
        figure.text(0.05, y, artifact.narrative, fontsize=9, wrap=True, va="top")
        return figure

    @staticmethod
    def _time_series(artifact: ReportArtifact) -> Figure:
        figure = Figure(figsize=LANDSCAPE)
        ax = figure.add_subplot(111)
        sensors = sorted({entry.sensor_id for entry in artifact.entries})
        for sensor_id in sensors:
            points = [entry for entry in artifact.entries if entry.sensor_id == sensor_id]
            ax.plot(
                [entry.observed_at for entry in points],
                [entry.flow_rate for entry in points],
                marker="o",
                markersize=2,
                linewidth=1,
                label=f"Sensor {sensor_id}",
            )
        ax.axhline(
            artifact.summary.threshold,
            color="#d9534f",
            linestyle="--",
            label="Critical limit",
        )
        anomalies = artifact.summary.anomalies
        if anomalies:
            ax.plot(
                [anomaly.timestamp for anomaly in anomalies],
                [anomaly.value for anomaly in anomalies],
                linestyle="None",
                marker="x",
                color="#d9534f",
                label="Anomaly",
            )
        ax.set_title("Flow rate over time")
        ax.set_xlabel("Time")
        ax.set_ylabel("Flow (L/min)")
        ax.grid(True, alpha=0.2)
        ax.xaxis.set_major_formatter(mdates.DateFormatter("%m-%d %H:%M"))
        ax.legend()
        figure.autofmt_xdate()
        return figure

    @staticmethod
    def _distribution(artifact: ReportArtifact) -> Figure:
        figure = Figure(figsize=(8, 4))
        ax = figure.add_subplot(111)
        bins = artifact.summary.distribution
        positions = list(range(len(bins)))
        labels = [_range_label(bucket.range_low, bucket.range_high) for bucket in bins]
        values = [bucket.percent for bucket in bins]
        # Numeric positions keep one bar per bin even when labels round alike.
        ax.bar(positions, values, color="#6b66e6")
        ax.set_xticks(positions, labels)
        for index, value in zip(positions, values):
            ax.text(index, value, f"{value:.1f}%", ha="center", va="bottom", fontsize=8)
        ax.set_title("Flow distribution")
        ax.set_xlabel("Flow range (L/min)")
        ax.set_ylabel("Share of readings (%)")
        ax.tick_params(axis="x", labelrotation=25)
        return figure


def _range_label(low: float, high: float) -> str:
    width = high - low
    if width > 0:
        decimals = min(MAX_LABEL_DECIMALS, max(2, math.ceil(-math.log10(width)) + 1))
    else:
        decimals = MAX_LABEL_DECIMALS
    return f"{low:.{decimals}f}-{high:.{decimals}f}"
