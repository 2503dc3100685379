from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from services.unit_migration import (
    backup_file,
    convert_document,
    migrate_directory,
    should_convert,
)


@pytest.mark.parametrize(
    ("key", "value", "force", "expected"),
    [
        ("caudal_min", 5000, False, True),
        ("caudal_min", 5.0, False, False),
        ("caudal_min", 5.0, True, True),
        ("custom_ml", 2500, False, True),
        ("hora", 5000, False, False),
        ("total_acumulado", True, True, False),
        ("total_acumulado", "5000", True, False),
    ],
)
def test_should_convert(key, value, force, expected) -> None:
    assert should_convert(key, value, 1000.0, force) is expected


def test_convert_document_walks_nested_structures() -> None:
    document = {
        "1": {"caudal_min": 5000, "total_acumulado": 120500, "hora": "10:00"},
        "2": [{"caudal_min": 12}, {"total": 2000}],
    }

    changes = convert_document(document)

    assert document["1"] == {"caudal_min": 5.0, "total_acumulado": 120.5, "hora": "10:00"}
    assert document["2"] == [{"caudal_min": 12}, {"total": 2.0}]
    assert [change.path for change in changes] == [
        "1.caudal_min",
        "1.total_acumulado",
        "2[1].total",
    ]


def test_backup_file_keeps_original_content(tmp_path: Path) -> None:
    source = tmp_path / "history.json"
    source.write_text("{}")

    backup = backup_file(source, now=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    assert backup.name.startswith("history.json.bak.2024-01-02T03-04-05")
    assert backup.read_text() == "{}"


def test_migrate_directory_preview_leaves_files_untouched(tmp_path: Path) -> None:
    path = tmp_path / "sensors.json"
    path.write_text(json.dumps({"1": {"caudal_min": 4000}}))

    results = migrate_directory(tmp_path)

    assert len(results) == 1
    assert results[0].changes[0].new == 4.0
    assert results[0].backup_path is None
    assert json.loads(path.read_text()) == {"1": {"caudal_min": 4000}}


def test_migrate_directory_apply_reports_unreadable_files(tmp_path: Path) -> None:
    (tmp_path / "broken.json").write_text("{oops")
    good = tmp_path / "history.json"
    good.write_text(json.dumps({"1": [{"total_acumulado": 3000}]}))
    untouched = tmp_path / "sensors.json"
    untouched.write_text(json.dumps({"1": {"caudal_min": 3.0}}))

    results = migrate_directory(tmp_path, apply=True)

    by_name = {result.path.name: result for result in results}
    assert by_name["broken.json"].error is not None
    assert by_name["history.json"].backup_path is not None
    assert by_name["sensors.json"].backup_path is None
    assert json.loads(good.read_text()) == {"1": [{"total_acumulado": 3.0}]}


def test_migrate_directory_requires_existing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        migrate_directory(tmp_path / "missing")
