from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import echo_heading, render_average, render_dashboard, render_statistics
from cli.simulator import SensorSimulator
from datastore.file_backend import JsonFileBackend
from datastore.sql_backend import SqlBackend
from logging_config import configure_logging
from services.errors import PersistenceFailure
from services.unit_migration import migrate_directory


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for operating the Acuavisor water monitor.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Monitor API base URL (defaults to API_BASE_URL env or http://localhost:4000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, http_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("simulate")
def simulate_command(
    ctx: typer.Context,
    ticks: int = typer.Option(0, "--ticks", min=0, help="Rounds to send; 0 runs until interrupted."),
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Seconds between rounds (default 3)."
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for reproducible values."),
) -> None:
    """Post random readings for sensors 1, 2 and 3, like an ESP32 would."""
    state = _get_state(ctx)
    delay = interval if interval is not None else state.config.simulate_interval
    simulator = SensorSimulator(seed=seed)
    typer.echo(f"Simulating sensors against {state.config.base_url} every {delay}s ...")

    sent = 0
    try:
        while ticks == 0 or sent < ticks:
            for payload in simulator.tick():
                response = state.client.post_reading(payload)
                data = response.get("data") or {}
                typer.echo(
                    f"sensor {payload['sensor_id']} -> {data.get('caudal_min')} L/min, "
                    f"{data.get('total_acumulado')} L"
                )
            sent += 1
            if ticks == 0 or sent < ticks:
                time.sleep(delay)
    except KeyboardInterrupt:
        typer.echo("Simulation stopped.")
    typer.secho(f"Sent {sent} round(s).", fg=typer.colors.GREEN)


@app.command("dashboard")
def dashboard_command(ctx: typer.Context) -> None:
    """Show the latest reading of every active sensor."""
    state = _get_state(ctx)
    render_dashboard(state.client.get_dashboard())


@app.command("average")
def average_command(
    ctx: typer.Context,
    sensor_id: Optional[str] = typer.Option(None, "--sensor", "-s", help="Limit to one sensor."),
    mode: str = typer.Option("rolling24h", "--mode", help="rolling24h or calendar."),
) -> None:
    """Compare average flow against the previous day."""
    state = _get_state(ctx)
    render_average(state.client.get_average(sensor_id, mode))


@app.command("report")
def report_command(
    ctx: typer.Context,
    sensor_id: Optional[str] = typer.Option(None, "--sensor", "-s", help="Limit to one sensor."),
    start: Optional[str] = typer.Option(None, "--start", help="ISO-8601 lower bound."),
    end: Optional[str] = typer.Option(None, "--end", help="ISO-8601 upper bound."),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Critical flow limit (L/min)."),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", file_okay=False, help="Write report.csv and report.pdf here."
    ),
) -> None:
    """Generate the statistical flow report."""
    state = _get_state(ctx)
    payload = state.client.get_professional_report(
        sensor_id=sensor_id, start=start, end=end, threshold=threshold
    )
    render_statistics(payload)

    if output_dir is None:
        return
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / "report.csv"
    csv_path.write_text(payload.get("csv") or "", encoding="utf-8")
    typer.echo()
    typer.secho(f"CSV written to {csv_path}", fg=typer.colors.GREEN)
    pdf = payload.get("pdf")
    if pdf:
        pdf_path = output_dir / "report.pdf"
        pdf_path.write_bytes(base64.b64decode(pdf))
        typer.secho(f"PDF written to {pdf_path}", fg=typer.colors.GREEN)


@app.command("migrate-units")
def migrate_units_command(
    directory: Path = typer.Argument(
        Path("./tmp/data"), file_okay=False, help="Directory holding snapshot JSON files."
    ),
    apply: bool = typer.Option(False, "--apply", help="Write changes (backups are kept)."),
    threshold: float = typer.Option(
        1000.0, "--threshold", help="Only convert values at or above this many mL."
    ),
    force: bool = typer.Option(False, "--force", help="Convert every matching key regardless of size."),
) -> None:
    """Convert millilitre values stored in JSON snapshots to litres."""
    try:
        results = migrate_directory(directory, apply=apply, threshold=threshold, force=force)
    except FileNotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    if not results:
        typer.echo(f"No JSON files found in {directory}.")
        return

    echo_heading("Unit migration preview" if not apply else "Unit migration")
    total = 0
    for result in results:
        if result.error:
            typer.echo(f"- {result.path.name}: {result.error}")
            continue
        total += len(result.changes)
        typer.echo(f"- {result.path.name}: {len(result.changes)} change(s)")
        for change in result.changes[:10]:
            typer.echo(f"   * {change.path}: {change.old} -> {change.new}")
        if result.backup_path is not None:
            typer.echo(f"   backup: {result.backup_path.name}")
    typer.echo(f"Total changes: {total}")
    if not apply:
        typer.echo("Preview only. Re-run with --apply to write changes.")


@app.command("migrate-to-sql")
def migrate_to_sql_command(
    directory: Path = typer.Argument(
        Path("./tmp/data"), file_okay=False, help="Directory holding snapshot JSON files."
    ),
    database_url: str = typer.Option(
        "sqlite:///./tmp/monitor.db", "--database-url", help="SQLAlchemy URL of the target database."
    ),
) -> None:
    """Copy a JSON file snapshot into the relational backend."""
    source = JsonFileBackend(directory)
    target = SqlBackend(database_url)
    try:
        snapshot = source.load()
        target.save(snapshot)
    except PersistenceFailure as exc:
        typer.secho(f"Migration failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        target.close()
    entries = sum(len(history) for history in snapshot.history.values())
    typer.secho(
        f"Migrated {len(snapshot.state)} sensor(s) and {entries} history entries.",
        fg=typer.colors.GREEN,
    )


@app.command("serve")
def serve_command(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(4000, "--port"),
) -> None:
    """Run the HTTP service."""
    configure_logging()
    uvicorn.run("app.main:app", host=host, port=port, log_config=None)
