from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_READINGS_PATH_ENV = "READINGS_PERSISTENCE_PATH"
_CONFIGURATIONS_PATH_ENV = "CONFIGURATIONS_PERSISTENCE_PATH"
_USERS_PATH_ENV = "USERS_PERSISTENCE_PATH"
_STORAGE_TIMEOUT_ENV = "STORAGE_TIMEOUT_SECONDS"
_SAMPLING_ENABLED_ENV = "SAMPLING_ENABLED"
_SAMPLING_SIMULATION_ENV = "SAMPLING_SIMULATION"
_SAMPLING_SENSOR_ENV = "SAMPLING_SENSOR_ID"
_SESSION_TTL_ENV = "SESSION_TTL_HOURS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    readings_path: Optional[str]
    configurations_path: Optional[str]
    users_path: Optional[str]
    storage_timeout_seconds: float
    sampling_enabled: bool
    sampling_simulation: bool
    sampling_sensor_id: str
    session_ttl_hours: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        readings_path=_read_optional_env(_READINGS_PATH_ENV, "./tmp/readings.json"),
        configurations_path=_read_optional_env(
            _CONFIGURATIONS_PATH_ENV, "./tmp/configurations.json"
        ),
        users_path=_read_optional_env(_USERS_PATH_ENV, "./tmp/users.json"),
        storage_timeout_seconds=_read_positive_float(_STORAGE_TIMEOUT_ENV, 5.0),
        sampling_enabled=_read_bool(_SAMPLING_ENABLED_ENV, True),
        sampling_simulation=_read_bool(_SAMPLING_SIMULATION_ENV, False),
        sampling_sensor_id=_read_str_env(_SAMPLING_SENSOR_ENV, "CAP-SENS-001"),
        session_ttl_hours=_read_positive_float(_SESSION_TTL_ENV, 8.0),
        log_level=_read_log_level("INFO"),
    )
