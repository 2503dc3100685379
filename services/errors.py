"""Error taxonomy for the monitoring pipeline."""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base class for errors raised by the monitoring services."""


class InvalidMeasurement(MonitorError, ValueError):
    """An ingested payload is missing a field or carries a non-numeric value."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InsufficientData(MonitorError, ValueError):
    """No entries are available to compute statistics or build a report."""


class PersistenceFailure(MonitorError):
    """A snapshot could not be written to or read from its backend."""


class UnknownSensor(MonitorError, KeyError):
    """The requested sensor has never reported."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""
