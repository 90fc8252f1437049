"""Derived fields for a raw tank-level percentage.

Everything here is pure: the result depends only on the raw value, the sensor
that produced it and the configuration version passed in. Readings store the
result at insert time, so nothing in this module is ever re-applied to an
existing reading.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Optional

from app.schemas import ConfigurationVersion
from models.records import (
    DEFAULT_CONFIGURATION,
    NO_DATA_SENTINEL,
    SENSOR_LOCATIONS,
    DerivedFields,
    ReadingStatus,
)

DEFAULT_VERSION_ID = "default"


@lru_cache(maxsize=1)
def default_configuration() -> ConfigurationVersion:
    """The configuration assumed before any version has been saved."""

    return ConfigurationVersion(
        version_id=DEFAULT_VERSION_ID,
        created_at=datetime(1970, 1, 1, tzinfo=timezone.utc),
        **DEFAULT_CONFIGURATION,
    )


def volume_liters(raw_value: float, capacity: int) -> int:
    """Liters for a fill percentage, rounded half away from zero."""

    liters = Decimal(str(raw_value)) * Decimal(capacity) / Decimal(100)
    # ROUND_HALF_UP in decimal rounds away from zero on ties, for both signs.
    return int(liters.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def classify(raw_value: float, alert_threshold: int, critical_threshold: int) -> ReadingStatus:
    """Map a percentage onto a status using inclusive thresholds.

    The comparisons run critical first, then alert, exactly in that order.
    Inverted thresholds (critical above alert) are not corrected here.
    """

    if raw_value == NO_DATA_SENTINEL:
        return ReadingStatus.no_data
    if raw_value <= critical_threshold:
        return ReadingStatus.critical
    if raw_value <= alert_threshold:
        return ReadingStatus.warning
    return ReadingStatus.normal


def resolve_location(
    sensor_id: str,
    configured_sensor_id: str,
    configured_location: str,
) -> str:
    if sensor_id == configured_sensor_id:
        return configured_location
    return SENSOR_LOCATIONS.get(sensor_id, f"Sensor {sensor_id}")


def derive(
    sensor_id: str,
    raw_value: float,
    config: Optional[ConfigurationVersion],
) -> DerivedFields:
    """Compute volume, status and location for one reading."""

    if config is None:
        config = default_configuration()

    status = classify(
        raw_value,
        alert_threshold=config.alert_threshold,
        critical_threshold=config.critical_threshold,
    )
    if status is ReadingStatus.no_data:
        liters = 0
    else:
        liters = volume_liters(raw_value, config.capacity)

    return DerivedFields(
        volume_liters=liters,
        status=status,
        location=resolve_location(sensor_id, config.sensor_id, config.cistern_location),
    )

