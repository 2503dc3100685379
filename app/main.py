from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.api import router
from logging_config import configure_logging
from services.monitor import MonitorService, build_monitor
from services.snapshots import install_crash_flush

logger = logging.getLogger(__name__)


def create_app(monitor: Optional[MonitorService] = None) -> FastAPI:
    """Build the application. ``monitor`` overrides the settings-driven wiring."""
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = monitor if monitor is not None else build_monitor()
        service.start()
        app.state.monitor = service
        uninstall = install_crash_flush(service.scheduler, loop=asyncio.get_running_loop())
        logger.info(
            "Water monitor started",
            extra={"backend": service.backend.name, "threshold": service.default_threshold},
        )
        try:
            yield
        finally:
            uninstall()
            service.shutdown()
            logger.info("Water monitor stopped", extra={"backend": service.backend.name})

    app = FastAPI(
        title="Acuavisor Water Monitor",
        description="Ingests ESP32 flow readings and serves dashboard data and flow reports.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.exception_handler(Exception)
    async def unexpected_failure(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error while serving request",
            exc_info=exc,
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Internal server error"},
        )

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {"status": "ok", "detail": "See /api/health for service status."}

    return app


app = create_app()
