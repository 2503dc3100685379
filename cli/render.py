from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _fmt(value: Optional[float], suffix: str = "") -> str:
    if value is None:
        return "n/a"
    return f"{value:.3f}{suffix}"


def render_dashboard(payload: Dict[str, Any]) -> None:
    readings = payload.get("data") or []
    echo_heading(f"Active sensors ({payload.get('count', len(readings))})")
    if not readings:
        typer.echo("No sensors have reported yet.")
        return
    for reading in readings:
        typer.echo(
            f"  - sensor {reading.get('sensor_id')}: "
            f"{reading.get('caudal_min')} L/min, "
            f"{reading.get('total_acumulado')} L total "
            f"(hora {reading.get('hora')}, {reading.get('storage')})"
        )


def render_average(payload: Dict[str, Any]) -> None:
    echo_heading(f"Average flow ({payload.get('mode')})")
    echo_key_values(
        [
            ("average", _fmt(payload.get("average"), " L/min")),
            ("samples", payload.get("samples")),
        ]
    )
    if "previousAverage" in payload:
        change = payload.get("changePercent")
        echo_key_values(
            [
                ("previous_average", _fmt(payload.get("previousAverage"), " L/min")),
                ("previous_samples", payload.get("previousSamples")),
                ("change", "no change data" if change is None else f"{change:+.1f}%"),
            ]
        )


def render_statistics(payload: Dict[str, Any]) -> None:
    stats = payload.get("stats") or {}
    echo_heading("Statistics")
    echo_key_values(
        [
            ("count", stats.get("count")),
            ("mean", _fmt(stats.get("mean"))),
            ("min", _fmt(stats.get("min"))),
            ("max", _fmt(stats.get("max"))),
            ("std_dev", _fmt(stats.get("std_dev"))),
            ("threshold", _fmt(stats.get("threshold"))),
            ("exceeded", f"{stats.get('exceeded_count')} ({stats.get('percent_exceeded', 0):.1f}%)"),
            ("time_outside_threshold_s", stats.get("time_outside_threshold_seconds")),
        ]
    )

    typer.echo()
    echo_heading("Distribution")
    for bucket in stats.get("distribution") or []:
        typer.echo(
            f"  {bucket.get('range_low'):.3f} - {bucket.get('range_high'):.3f}: "
            f"{bucket.get('count')} ({bucket.get('percent'):.1f}%)"
        )

    typer.echo()
    echo_heading("Anomalies")
    anomalies = stats.get("anomalies") or []
    if anomalies:
        for anomaly in anomalies:
            typer.echo(
                f"  - sensor {anomaly.get('sensor_id')} at {anomaly.get('timestamp')}: "
                f"{anomaly.get('value')}"
            )
    else:
        typer.echo("No anomalies detected.")

    narrative = payload.get("narrative")
    if narrative:
        typer.echo()
        typer.echo(narrative)
