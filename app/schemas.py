"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import SensorReading
from services.statistics import StatisticsSummary


class SensorReadingOut(BaseModel):
    """A stored reading, using the field names the firmware and dashboard share."""

    sensor_id: str
    caudal_min: float = Field(..., description="Flow rate in litres per minute.")
    total_acumulado: float = Field(..., description="Accumulated volume in litres.")
    hora: str = Field(..., description="Sensor-supplied display time.")
    ultima_actualizacion: datetime = Field(..., description="Server-assigned ingestion time.")
    storage: str
    volume_fault: bool = False

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "SensorReadingOut":
        return cls(
            sensor_id=reading.sensor_id,
            caudal_min=reading.flow_rate,
            total_acumulado=reading.accumulated_volume,
            hora=reading.time_label,
            ultima_actualizacion=reading.observed_at,
            storage=reading.storage_tag,
            volume_fault=reading.volume_fault,
        )


class IngestResponse(BaseModel):
    success: bool = True
    data: SensorReadingOut


class DashboardResponse(BaseModel):
    success: bool = True
    count: int = Field(..., ge=0)
    data: List[SensorReadingOut] = Field(default_factory=list)


class ReportsResponse(BaseModel):
    success: bool = True
    count: int = Field(..., ge=0, description="Number of sensors with history.")
    data: Dict[str, List[SensorReadingOut]] = Field(default_factory=dict)


class AverageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    mode: str
    average: Optional[float] = None
    samples: int = Field(..., ge=0)
    previous_average: Optional[float] = Field(default=None, alias="previousAverage")
    previous_samples: Optional[int] = Field(default=None, alias="previousSamples")
    change_percent: Optional[float] = Field(default=None, alias="changePercent")


class DistributionBinOut(BaseModel):
    range_low: float
    range_high: float
    count: int = Field(..., ge=0)
    percent: float


class AnomalyOut(BaseModel):
    sensor_id: str
    timestamp: datetime
    value: float


class StatisticsOut(BaseModel):
    """Statistical summary of the selected readings."""

    count: int = Field(..., ge=1)
    mean: float
    min: float
    max: float
    std_dev: float
    exceeded_count: int
    normal_count: int
    percent_exceeded: float
    percent_normal: float
    sampling_interval_seconds: float
    time_outside_threshold_seconds: float = Field(
        ..., description="Approximation: exceeded samples times the median sampling interval."
    )
    threshold: float
    distribution: List[DistributionBinOut] = Field(default_factory=list)
    anomalies: List[AnomalyOut] = Field(default_factory=list)

    @classmethod
    def from_summary(cls, summary: StatisticsSummary) -> "StatisticsOut":
        return cls(
            count=summary.count,
            mean=summary.mean,
            min=summary.min,
            max=summary.max,
            std_dev=summary.std_dev,
            exceeded_count=summary.exceeded_count,
            normal_count=summary.normal_count,
            percent_exceeded=summary.percent_exceeded,
            percent_normal=summary.percent_normal,
            sampling_interval_seconds=summary.sampling_interval_seconds,
            time_outside_threshold_seconds=summary.time_outside_threshold_seconds,
            threshold=summary.threshold,
            distribution=[
                DistributionBinOut(
                    range_low=bucket.range_low,
                    range_high=bucket.range_high,
                    count=bucket.count,
                    percent=bucket.percent,
                )
                for bucket in summary.distribution
            ],
            anomalies=[
                AnomalyOut(sensor_id=item.sensor_id, timestamp=item.timestamp, value=item.value)
                for item in summary.anomalies
            ],
        )


class ProfessionalReportResponse(BaseModel):
    success: bool = True
    pdf: Optional[str] = Field(default=None, description="Base64-encoded PDF document.")
    csv: str
    stats: StatisticsOut
    narrative: str


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    sensores_activos: int = Field(..., ge=0)


class DbStatusResponse(BaseModel):
    success: bool = True
    dbConnected: bool
    dbBacking: str
