"""Use cases behind the HTTP surface: ingestion, dashboard reads and reports."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from datastore.backends import InMemoryBackend, SnapshotBackend
from datastore.file_backend import JsonFileBackend
from datastore.sql_backend import SqlBackend
from models.records import SensorReading
from services.errors import InvalidMeasurement
from services.normalizer import VolumePolicy, apply_volume_policy, parse_payload
from services.rendering import MatplotlibPdfRenderer
from services.reports import ReportArtifact, ReportFormat, ReportSynthesizer, render_flat_export
from services.snapshots import SnapshotScheduler
from services.windows import calendar_yesterday_average, rolling_average
from settings import Settings, get_settings
from storage.sensor_store import SensorStore

logger = logging.getLogger(__name__)


class AverageMode(str, Enum):
    rolling24h = "rolling24h"
    calendar = "calendar"


@dataclass(frozen=True)
class AverageResult:
    mode: AverageMode
    average: Optional[float]
    samples: int
    previous_average: Optional[float] = None
    previous_samples: Optional[int] = None
    change_percent: Optional[float] = None


class MonitorService:
    """Coordinates the store, its persistence and the reporting pipeline."""

    def __init__(
        self,
        store: SensorStore,
        scheduler: SnapshotScheduler,
        synthesizer: ReportSynthesizer,
        default_threshold: float = 0.012,
        volume_policy: VolumePolicy = VolumePolicy.accept,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.synthesizer = synthesizer
        self.default_threshold = default_threshold
        self.volume_policy = volume_policy

    @property
    def backend(self) -> SnapshotBackend:
        return self.scheduler.backend

    def start(self) -> None:
        self.scheduler.restore()
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.backend.close()

    def ingest_payload(
        self, payload: Mapping[str, Any], observed_at: Optional[datetime] = None
    ) -> SensorReading:
        """Validate, normalize and store one sensor payload."""
        policy = self.volume_policy
        try:
            reading = parse_payload(payload, observed_at=observed_at)
            if policy is VolumePolicy.accept:
                stored = self.store.ingest(reading)
            else:
                # The comparison with the previous volume and the append share one lock.
                stored = self.store.ingest_checked(
                    reading,
                    lambda candidate, previous: apply_volume_policy(candidate, previous, policy),
                )
        except InvalidMeasurement as exc:
            logger.warning(
                "Rejected sensor payload",
                extra={
                    "sensor_id": payload.get("sensor_id"),
                    "field": exc.field,
                    "reason": str(exc),
                },
            )
            raise

        logger.info(
            "Reading stored",
            extra={"sensor_id": stored.sensor_id, "storage_tag": stored.storage_tag},
        )
        return stored

    def dashboard(self) -> List[SensorReading]:
        return sorted(self.store.latest_all(), key=lambda reading: reading.sensor_id)

    def reports(self) -> Dict[str, List[SensorReading]]:
        return self.store.history_all()

    def average(
        self,
        sensor_id: Optional[str] = None,
        mode: AverageMode = AverageMode.rolling24h,
        now: Optional[datetime] = None,
    ) -> AverageResult:
        history = self.store.history_all()
        if mode is AverageMode.calendar:
            window = calendar_yesterday_average(history, sensor_id=sensor_id, today=now)
            return AverageResult(mode=mode, average=window.average, samples=window.samples)

        comparison = rolling_average(history, sensor_id=sensor_id, now=now)
        return AverageResult(
            mode=mode,
            average=comparison.average,
            samples=comparison.samples,
            previous_average=comparison.previous_average,
            previous_samples=comparison.previous_samples,
            change_percent=comparison.change_percent,
        )

    def select_entries(
        self,
        sensor_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[SensorReading]:
        if sensor_id is not None:
            entries = self.store.history_for(sensor_id)
        else:
            entries = [
                reading for history in self.store.history_all().values() for reading in history
            ]
        lower = _as_utc(start)
        upper = _as_utc(end)
        return [
            entry
            for entry in entries
            if (lower is None or entry.observed_at >= lower)
            and (upper is None or entry.observed_at <= upper)
        ]

    def professional_report(
        self,
        sensor_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        threshold: Optional[float] = None,
        fmt: ReportFormat = ReportFormat.full,
    ) -> ReportArtifact:
        limit = self.default_threshold if threshold is None else threshold
        entries = self.select_entries(sensor_id=sensor_id, start=start, end=end)
        title = f"Water flow report - sensor {sensor_id}" if sensor_id else "Water flow report"
        return self.synthesizer.build_report(entries, limit, fmt=fmt, title=title)

    def flat_export(self) -> str:
        return render_flat_export(self.store.history_all())

    def db_status(self) -> Dict[str, Any]:
        return {
            "dbConnected": self.backend.is_connected(),
            "dbBacking": self.backend.name,
        }

    def active_sensor_count(self) -> int:
        return self.store.sensor_count()


def _as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def build_backend(settings: Settings) -> SnapshotBackend:
    if settings.persistence_backend == "file" and settings.snapshot_dir:
        return JsonFileBackend(Path(settings.snapshot_dir))
    if settings.persistence_backend == "sql":
        return SqlBackend(settings.database_url)
    return InMemoryBackend()


def build_monitor(settings: Optional[Settings] = None) -> MonitorService:
    """Wire a monitor from configuration. Called once by the application lifespan."""
    settings = settings or get_settings()
    backend = build_backend(settings)
    store = SensorStore(history_limit=settings.history_limit, storage_tag=backend.name)
    scheduler = SnapshotScheduler(
        store=store,
        backend=backend,
        interval_seconds=settings.snapshot_interval_seconds,
    )
    return MonitorService(
        store=store,
        scheduler=scheduler,
        synthesizer=ReportSynthesizer(renderer=MatplotlibPdfRenderer()),
        default_threshold=settings.default_threshold,
        volume_policy=VolumePolicy(settings.volume_policy),
    )
