from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

BASE_URL_ENV = "API_BASE_URL"
SIMULATE_INTERVAL_ENV = "CLI_SIMULATE_INTERVAL"
HTTP_TIMEOUT_ENV = "CLI_HTTP_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    """Connection settings for talking to a running monitor."""

    base_url: str = "http://localhost:4000"
    simulate_interval: float = 3.0
    http_timeout: float = 30.0


def _env_seconds(name: str, fallback: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        seconds = float(raw) if raw else fallback
    except ValueError:
        return fallback
    return seconds if seconds > 0 else fallback


def load_config(
    base_url: Optional[str] = None,
    simulate_interval: Optional[float] = None,
    http_timeout: Optional[float] = None,
) -> CLIConfig:
    """Merge explicit CLI options over environment variables over defaults."""
    defaults = CLIConfig()
    url = base_url or os.getenv(BASE_URL_ENV) or defaults.base_url
    return CLIConfig(
        base_url=url.rstrip("/"),
        simulate_interval=(
            simulate_interval
            if simulate_interval is not None
            else _env_seconds(SIMULATE_INTERVAL_ENV, defaults.simulate_interval)
        ),
        http_timeout=(
            http_timeout
            if http_timeout is not None
            else _env_seconds(HTTP_TIMEOUT_ENV, defaults.http_timeout)
        ),
    )
