from __future__ import annotations

import logging
import time
from logging.config import dictConfig
from typing import Any, Dict, Iterable, Optional, Tuple

from settings import get_settings

# Context attached through ``extra=`` that is worth printing on every line.
CONTEXT_KEYS: Tuple[str, ...] = (
    "sensor_id",
    "field",
    "backend",
    "storage_tag",
    "entry_count",
    "threshold",
    "mode",
    "path",
    "reason",
    "status",
    "invalid_value",
)

# Libraries that are noisy below WARNING: font discovery, PDF backends, SQL echo.
QUIET_LOGGERS: Tuple[str, ...] = ("matplotlib", "PIL", "sqlalchemy.engine")

LINE_FORMAT = "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def _render_value(value: Any) -> str:
    text = str(value)
    if not text or any(char.isspace() for char in text):
        return repr(text)
    return text


class ContextualFormatter(logging.Formatter):
    """UTC formatter that appends known ``extra=`` fields as ``key=value`` pairs."""

    converter = time.gmtime

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = "%",
        context_keys: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.context_keys = tuple(context_keys or CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs: list[str] = []
        for key in self.context_keys:
            value = getattr(record, key, None)
            if value is not None:
                pairs.append(f"{key}={_render_value(value)}")
        return f"{line} | {' '.join(pairs)}" if pairs else line


def build_logging_config(level: str | int) -> Dict[str, Any]:
    """Return the ``dictConfig`` mapping used by the service and the CLI."""
    loggers: Dict[str, Dict[str, Any]] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    # uvicorn installs its own handlers; route its records through ours instead.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        loggers[name] = {"handlers": [], "propagate": True}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "contextual": {
                "()": "logging_config.ContextualFormatter",
                "fmt": LINE_FORMAT,
                "datefmt": DATE_FORMAT,
                "context_keys": list(CONTEXT_KEYS),
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "contextual",
            }
        },
        "loggers": loggers,
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual console handler once per process."""
    global _configured
    if _configured:
        return
    dictConfig(build_logging_config(level if level is not None else get_settings().log_level))
    _configured = True
