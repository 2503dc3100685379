from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.simulator import SensorSimulator
from datastore.file_backend import JsonFileBackend
from datastore.sql_backend import SqlBackend


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.posted: List[Dict[str, Any]] = []
        self.average_calls: List[tuple[Optional[str], str]] = []
        self.report_calls: List[Dict[str, Any]] = []
        self.closed = False

    def post_reading(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.posted.append(payload)
        return {
            "success": True,
            "data": {
                "sensor_id": payload["sensor_id"],
                "caudal_min": float(payload["caudal_min"]) / 1000,
                "total_acumulado": float(payload["total_acumulado"]) / 1000,
            },
        }

    def get_dashboard(self) -> Dict[str, Any]:
        return {
            "success": True,
            "count": 1,
            "data": [
                {
                    "sensor_id": "1",
                    "caudal_min": 5.0,
                    "total_acumulado": 50.0,
                    "hora": "10:00",
                    "storage": "memory",
                }
            ],
        }

    def get_average(self, sensor_id: Optional[str], mode: str) -> Dict[str, Any]:
        self.average_calls.append((sensor_id, mode))
        return {
            "success": True,
            "mode": mode,
            "average": 6.0,
            "samples": 4,
            "previousAverage": 4.0,
            "previousSamples": 3,
            "changePercent": 50.0,
        }

    def get_professional_report(self, **kwargs: Any) -> Dict[str, Any]:
        self.report_calls.append(kwargs)
        return {
            "success": True,
            "pdf": base64.b64encode(b"%PDF-stub").decode("ascii"),
            "csv": "\ufeffreport,Water flow report\r\n",
            "stats": {
                "count": 10,
                "mean": 2.9,
                "min": 1.0,
                "max": 20.0,
                "std_dev": 5.7,
                "threshold": 5.0,
                "exceeded_count": 1,
                "percent_exceeded": 10.0,
                "time_outside_threshold_seconds": 60.0,
                "distribution": [
                    {"range_low": 1.0, "range_high": 20.0, "count": 10, "percent": 100.0}
                ],
                "anomalies": [
                    {"sensor_id": "1", "timestamp": "2024-05-01T08:09:00Z", "value": 20.0}
                ],
            },
            "narrative": "Flow stayed within the limit for 90.0% of 10 readings.",
        }

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_simulate_posts_one_round_per_tick(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["simulate", "--ticks", "2", "--interval", "0", "--seed", "7"])

    assert result.exit_code == 0, result.output
    assert len(stub.posted) == 6
    assert [payload["sensor_id"] for payload in stub.posted[:3]] == ["1", "2", "3"]
    assert "Sent 2 round(s)." in result.output
    assert stub.closed is True


def test_base_url_option_reaches_client(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["--base-url", "http://monitor:9000/", "dashboard"])

    assert result.exit_code == 0, result.output
    assert stub.config.base_url == "http://monitor:9000"


def test_dashboard_lists_sensors(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["dashboard"])

    assert result.exit_code == 0, result.output
    assert "Active sensors (1)" in result.output
    assert "sensor 1: 5.0 L/min" in result.output


def test_average_prints_comparison(runner: CliRunner, stub: StubClient) -> None:
    result = runner.invoke(app, ["average", "--sensor", "2", "--mode", "rolling24h"])

    assert result.exit_code == 0, result.output
    assert stub.average_calls == [("2", "rolling24h")]
    assert "average: 6.000 L/min" in result.output
    assert "change: +50.0%" in result.output


def test_report_writes_documents(runner: CliRunner, stub: StubClient, tmp_path: Path) -> None:
    output_dir = tmp_path / "out"

    result = runner.invoke(
        app,
        ["report", "--sensor", "1", "--threshold", "5", "--output-dir", str(output_dir)],
    )

    assert result.exit_code == 0, result.output
    assert stub.report_calls == [
        {"sensor_id": "1", "start": None, "end": None, "threshold": 5.0}
    ]
    assert "Statistics" in result.output
    assert "Anomalies" in result.output
    assert "90.0% of 10 readings" in result.output
    assert (output_dir / "report.pdf").read_bytes() == b"%PDF-stub"
    assert (output_dir / "report.csv").read_text(encoding="utf-8").startswith("\ufeff")


def test_migrate_units_preview_then_apply(runner: CliRunner, tmp_path: Path) -> None:
    snapshot = tmp_path / "sensors.json"
    snapshot.write_text(json.dumps({"1": {"caudal_min": 5000, "total_acumulado": 2.5}}))

    preview = runner.invoke(app, ["migrate-units", str(tmp_path)])

    assert preview.exit_code == 0, preview.output
    assert "1.caudal_min: 5000 -> 5.0" in preview.output
    assert "Preview only" in preview.output
    assert json.loads(snapshot.read_text())["1"]["caudal_min"] == 5000

    applied = runner.invoke(app, ["migrate-units", str(tmp_path), "--apply"])

    assert applied.exit_code == 0, applied.output
    assert json.loads(snapshot.read_text())["1"] == {"caudal_min": 5.0, "total_acumulado": 2.5}
    assert len(list(tmp_path.glob("sensors.json.bak.*"))) == 1


def test_migrate_units_missing_directory_fails(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(app, ["migrate-units", str(tmp_path / "absent")])

    assert result.exit_code == 1


def test_migrate_to_sql_copies_file_snapshot(runner: CliRunner, tmp_path: Path) -> None:
    source = tmp_path / "data"
    sensors = {
        "4": {
            "sensor_id": "4",
            "caudal_min": 1.5,
            "total_acumulado": 12.0,
            "hora": "08:00",
            "ultima_actualizacion": "2024-01-01T08:00:00+00:00",
            "storage": "file",
        }
    }
    source.mkdir()
    (source / "sensors.json").write_text(json.dumps(sensors))
    (source / "history.json").write_text(json.dumps({"4": [sensors["4"]]}))
    url = f"sqlite:///{tmp_path / 'monitor.db'}"

    result = runner.invoke(app, ["migrate-to-sql", str(source), "--database-url", url])

    assert result.exit_code == 0, result.output
    assert "Migrated 1 sensor(s) and 1 history entries." in result.output
    backend = SqlBackend(url)
    try:
        assert backend.load() == JsonFileBackend(source).load()
    finally:
        backend.close()


def test_simulator_emits_millilitre_strings() -> None:
    simulator = SensorSimulator(seed=1)

    first = simulator.tick()
    second = simulator.tick()

    assert [payload["sensor_id"] for payload in first] == ["1", "2", "3"]
    for payload in first + second:
        assert 2000 <= int(payload["caudal_min"]) <= 14000
        assert payload["hora"]
    for before, after in zip(first, second):
        assert int(after["total_acumulado"]) >= int(before["total_acumulado"])
