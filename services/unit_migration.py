"""Convert millilitre values left in JSON snapshots by older builds to litres."""

from __future__ import annotations

import json
import logging
import math
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_ML = 1000.0
TARGET_KEYS = frozenset(
    {
        "caudal_min",
        "total_acumulado",
        "caudal",
        "total",
        "flow_ml",
        "volume_ml",
        "total_ml",
        "caudal_ml",
    }
)


@dataclass(frozen=True)
class ValueChange:
    path: str
    key: str
    old: float
    new: float


@dataclass
class FileMigration:
    path: Path
    changes: List[ValueChange] = field(default_factory=list)
    error: Optional[str] = None
    backup_path: Optional[Path] = None
    data: Any = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def should_convert(key: str, value: Any, threshold: float, force: bool) -> bool:
    if not _is_number(value):
        return False
    if key not in TARGET_KEYS and not key.endswith("_ml"):
        return False
    # Without --force only values that still look like millilitres are touched.
    return force or abs(value) >= threshold


def convert_document(
    document: Any,
    threshold: float = DEFAULT_THRESHOLD_ML,
    force: bool = False,
    prefix: str = "",
) -> List[ValueChange]:
    """Convert matching values in place and return what changed."""
    changes: List[ValueChange] = []
    if isinstance(document, list):
        for index, item in enumerate(document):
            changes.extend(convert_document(item, threshold, force, f"{prefix}[{index}]"))
    elif isinstance(document, dict):
        for key in list(document):
            value = document[key]
            path = f"{prefix}.{key}" if prefix else key
            if should_convert(key, value, threshold, force):
                converted = round(value / 1000.0, 3)
                document[key] = converted
                changes.append(ValueChange(path=path, key=key, old=value, new=converted))
            elif isinstance(value, (dict, list)):
                changes.extend(convert_document(value, threshold, force, path))
    return changes


def backup_file(path: Path, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    destination = path.with_name(f"{path.name}.bak.{stamp}")
    shutil.copy2(path, destination)
    return destination


def migrate_directory(
    directory: Path,
    apply: bool = False,
    threshold: float = DEFAULT_THRESHOLD_ML,
    force: bool = False,
) -> List[FileMigration]:
    """Scan ``*.json`` files; when ``apply`` is set, back up and rewrite changed files."""
    if not directory.is_dir():
        raise FileNotFoundError(f"Snapshot directory {directory} does not exist.")

    results: List[FileMigration] = []
    for path in sorted(directory.glob("*.json")):
        result = FileMigration(path=path)
        try:
            result.data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            result.error = f"JSON parse error: {exc}"
            logger.warning("Skipping unreadable snapshot", extra={"path": str(path)})
            results.append(result)
            continue
        result.changes = convert_document(result.data, threshold=threshold, force=force)
        results.append(result)

    if not apply:
        return results

    for result in results:
        if result.error or not result.changes:
            continue
        result.backup_path = backup_file(result.path)
        result.path.write_text(json.dumps(result.data, indent=2), encoding="utf-8")
        logger.info(
            "Converted snapshot values to litres",
            extra={"path": str(result.path), "entry_count": len(result.changes)},
        )
    return results
