"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Mapping, Optional


NO_DATA_SENTINEL = -1


class ReadingStatus(str, Enum):
    """Threshold classification stored with every reading."""

    critical = "Critical"
    warning = "Warning"
    normal = "Normal"
    no_data = "No data"


# Values used for absent configuration fields and when no version exists yet.
DEFAULT_CONFIGURATION: Mapping[str, object] = {
    "cistern_name": "Cisterna - Sorluana",
    "capacity": 10000,
    "cistern_location": "Edificio G - Sor Juana",
    "cistern_material": "Concreto armado",
    "sensor_model": "Sensor Capacitivo XYZ-2000",
    "sensor_id": "CAP-SENS-001",
    "sensor_installed_on": date(2024, 10, 15),
    "sensor_precision": "±2%",
    "sampling_interval_ms": 10000,
    "alert_threshold": 15,
    "critical_threshold": 5,
}

# Fallback locations for sensors that are not the configured cistern sensor.
SENSOR_LOCATIONS: Mapping[str, str] = {
    "CAP-SENS-001": "Edificio G - Sor Juana",
    "CAP-SENS-002": "Edificio G - Azotea",
    "CAP-SENS-003": "Cuarto de bombas",
}


@dataclass(frozen=True, slots=True)
class DerivedFields:
    """Values computed from a raw percentage and a configuration version."""

    volume_liters: int
    status: ReadingStatus
    location: str


@dataclass(slots=True)
class ReadingFilters:
    """Optional filters for history queries; provided fields are ANDed."""

    sensor_id: Optional[str] = None
    status: Optional[ReadingStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass(slots=True)
class Session:
    """An issued login session."""

    token: str
    username: str
    role: str
    issued_at: datetime
    expires_at: datetime
