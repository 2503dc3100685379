from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Tuple, TypeVar

BACKEND_CHOICES: Tuple[str, ...] = ("memory", "file", "sql")
VOLUME_POLICY_CHOICES: Tuple[str, ...] = ("accept", "reject", "clamp", "flag")

_Number = TypeVar("_Number", int, float)


@dataclass(frozen=True)
class Settings:
    """Process configuration, read once from ``MONITOR_*`` environment variables."""

    history_limit: int
    persistence_backend: str
    snapshot_dir: Optional[str]
    snapshot_interval_seconds: float
    database_url: str
    default_threshold: float
    volume_policy: str
    log_level: str


def _raw_env(name: str) -> Optional[str]:
    """Stripped value of ``name``; blank and unset are both ``None``."""
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip() or None


def _env_text(name: str, default: str) -> str:
    return _raw_env(name) or default


def _env_path(name: str, default: Optional[str]) -> Optional[str]:
    # Set-but-blank disables the path instead of restoring the default.
    if os.getenv(name) is None:
        return default
    return _raw_env(name)


def _env_choice(name: str, choices: Tuple[str, ...], default: str) -> str:
    candidate = _env_text(name, default).lower()
    return candidate if candidate in choices else default


def _env_number(
    name: str,
    default: _Number,
    cast: Callable[[str], _Number],
    allow_zero: bool = False,
) -> _Number:
    raw = _raw_env(name)
    if raw is None:
        return default
    try:
        parsed = cast(raw)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


@lru_cache
def get_settings() -> Settings:
    return Settings(
        history_limit=_env_number("MONITOR_HISTORY_LIMIT", 500, int),
        persistence_backend=_env_choice("MONITOR_PERSISTENCE_BACKEND", BACKEND_CHOICES, "memory"),
        snapshot_dir=_env_path("MONITOR_SNAPSHOT_DIR", "./tmp/data"),
        snapshot_interval_seconds=_env_number("MONITOR_SNAPSHOT_INTERVAL", 5.0, float),
        database_url=_env_text("MONITOR_DATABASE_URL", "sqlite:///./tmp/monitor.db"),
        default_threshold=_env_number("MONITOR_DEFAULT_THRESHOLD", 0.012, float, allow_zero=True),
        volume_policy=_env_choice("MONITOR_VOLUME_POLICY", VOLUME_POLICY_CHOICES, "accept"),
        log_level=_env_text("LOG_LEVEL", "INFO").upper(),
    )
