"""HTTP route definitions for the service."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response

from app.schemas import (
    AverageResponse,
    DashboardResponse,
    DbStatusResponse,
    HealthResponse,
    IngestResponse,
    ProfessionalReportResponse,
    ReportsResponse,
    SensorReadingOut,
    StatisticsOut,
)
from services.errors import InsufficientData, InvalidMeasurement
from services.monitor import AverageMode, MonitorService

router = APIRouter(prefix="/api")


def get_monitor(request: Request) -> MonitorService:
    return request.app.state.monitor


@router.post(
    "/sensor-data",
    response_model=IngestResponse,
    summary="Ingest one reading (values in millilitres) from a sensor.",
)
def ingest_sensor_data(
    payload: Dict[str, Any] = Body(..., description="{sensor_id, caudal_min, total_acumulado, hora}"),
    monitor: MonitorService = Depends(get_monitor),
) -> IngestResponse:
    try:
        reading = monitor.ingest_payload(payload)
    except InvalidMeasurement as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return IngestResponse(data=SensorReadingOut.from_reading(reading))


@router.get(
    "/dashboard",
    response_model=DashboardResponse,
    summary="Latest reading for every active sensor.",
)
def dashboard(monitor: MonitorService = Depends(get_monitor)) -> DashboardResponse:
    readings = [SensorReadingOut.from_reading(reading) for reading in monitor.dashboard()]
    return DashboardResponse(count=len(readings), data=readings)


@router.get(
    "/reports",
    response_model=ReportsResponse,
    summary="Bounded reading history per sensor.",
)
def reports(monitor: MonitorService = Depends(get_monitor)) -> ReportsResponse:
    history = monitor.reports()
    data = {
        sensor_id: [SensorReadingOut.from_reading(reading) for reading in entries]
        for sensor_id, entries in history.items()
    }
    return ReportsResponse(count=len(data), data=data)


@router.get(
    "/average-yesterday",
    response_model=AverageResponse,
    response_model_exclude_unset=True,
    summary="Average flow over the last 24h (vs the 24h before) or over yesterday.",
)
def average_yesterday(
    sensor_id: Optional[str] = Query(default=None),
    mode: str = Query(default=AverageMode.rolling24h.value),
    monitor: MonitorService = Depends(get_monitor),
) -> AverageResponse:
    try:
        selected = AverageMode(mode)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"mode must be one of: {', '.join(item.value for item in AverageMode)}",
        ) from exc

    result = monitor.average(sensor_id=sensor_id, mode=selected)
    if selected is AverageMode.calendar:
        return AverageResponse(
            success=True, mode=selected.value, average=result.average, samples=result.samples
        )
    return AverageResponse(
        success=True,
        mode=selected.value,
        average=result.average,
        samples=result.samples,
        previous_average=result.previous_average,
        previous_samples=result.previous_samples,
        change_percent=result.change_percent,
    )


@router.get(
    "/generate-report",
    summary="Flat CSV export of every stored reading.",
    response_class=Response,
)
def generate_report(monitor: MonitorService = Depends(get_monitor)) -> Response:
    filename = f"reporte_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}.csv"
    return Response(
        content=monitor.flat_export().encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get(
    "/generate-professional-report",
    response_model=ProfessionalReportResponse,
    summary="Statistics, diagnostic narrative, CSV and PDF for a slice of history.",
)
def generate_professional_report(
    sensor_id: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    threshold: Optional[float] = Query(default=None, ge=0),
    monitor: MonitorService = Depends(get_monitor),
) -> ProfessionalReportResponse:
    try:
        artifact = monitor.professional_report(
            sensor_id=sensor_id, start=start, end=end, threshold=threshold
        )
    except InsufficientData as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    pdf = base64.b64encode(artifact.pdf).decode("ascii") if artifact.pdf is not None else None
    return ProfessionalReportResponse(
        pdf=pdf,
        csv=artifact.csv or "",
        stats=StatisticsOut.from_summary(artifact.summary),
        narrative=artifact.narrative,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check.",
)
def healthcheck(monitor: MonitorService = Depends(get_monitor)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        sensores_activos=monitor.active_sensor_count(),
    )


@router.get(
    "/db-status",
    response_model=DbStatusResponse,
    summary="Which persistence backend mirrors the store.",
)
def db_status(monitor: MonitorService = Depends(get_monitor)) -> DbStatusResponse:
    return DbStatusResponse(**monitor.db_status())
