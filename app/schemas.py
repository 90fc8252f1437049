"""Pydantic schemas for persisted records and the HTTP API layer."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import ReadingStatus


class Reading(BaseModel):
    """A persisted sensor reading with the fields derived at insert time."""

    model_config = ConfigDict(frozen=True)

    reading_id: str
    sensor_id: str
    raw_value: float
    volume_liters: int
    status: ReadingStatus
    location: str
    configuration_id: Optional[str] = Field(
        default=None,
        description="Configuration version used for derivation; null when defaults applied.",
    )
    timestamp: datetime


class ConfigurationVersion(BaseModel):
    """One immutable entry of the configuration history."""

    model_config = ConfigDict(frozen=True)

    version_id: str
    cistern_name: str
    capacity: int
    cistern_location: str
    cistern_material: str
    sensor_model: str
    sensor_id: str
    sensor_installed_on: date
    sensor_precision: str
    sampling_interval_ms: int
    alert_threshold: int
    critical_threshold: int
    created_at: datetime


class ConfigurationUpdate(BaseModel):
    """Fields accepted when saving a configuration; absent fields use defaults."""

    cistern_name: Optional[str] = None
    capacity: Optional[int] = None
    cistern_location: Optional[str] = None
    cistern_material: Optional[str] = None
    sensor_model: Optional[str] = None
    sensor_id: Optional[str] = None
    sensor_installed_on: Optional[date] = None
    sensor_precision: Optional[str] = None
    sampling_interval_ms: Optional[int] = Field(default=None, gt=0)
    alert_threshold: Optional[int] = None
    critical_threshold: Optional[int] = None
    restart_sampling: bool = Field(
        default=False,
        description="Restart the sampling scheduler with the new interval after saving.",
    )


class IngestRequest(BaseModel):
    """Raw reading pushed by a device; validation happens in the ingestor."""

    model_config = ConfigDict(populate_by_name=True)

    sensor_id: Optional[str] = Field(default=None, alias="sensorId")
    raw_value: Any = Field(default=None, alias="rawValue")


class IngestResponse(BaseModel):
    success: bool
    persisted: bool
    message: Optional[str] = None
    data: Reading


class LevelResponse(BaseModel):
    level: Optional[float] = None
    reading: Optional[Reading] = None


class ConfigurationSaveResponse(BaseModel):
    success: bool
    durable: bool
    message: str
    sampling_restarted: bool = False
    data: ConfigurationVersion


class Pagination(BaseModel):
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)


class RecordsPage(BaseModel):
    success: bool = True
    records: List[Reading] = Field(default_factory=list)
    pagination: Pagination


class SamplingState(BaseModel):
    running: bool
    interval_ms: Optional[int] = None
    simulation: bool
    ticks: int = Field(..., ge=0)
    failures: int = Field(..., ge=0)


class SystemInfo(BaseModel):
    status: Literal["ok", "degraded"]
    storage: Literal["ok", "unavailable"]
    sampling: SamplingState
    reading_count: Optional[int] = None
    configuration_versions: Optional[int] = None


class UserRecord(BaseModel):
    """Stored credential record; never returned by the API."""

    username: str
    name: str
    email: str
    password_hash: str
    role: Literal["admin", "operator", "viewer"] = "viewer"
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserInfo(BaseModel):
    username: str
    name: str
    email: str
    role: str
    last_login_at: Optional[datetime] = None
    created_at: datetime


class LoginRequest(BaseModel):
    username: str = Field(default="", max_length=64)
    password: str = ""


class LoginResponse(BaseModel):
    success: bool = True
    token: str
    user: UserInfo
    expires_at: datetime


class VerifyRequest(BaseModel):
    token: Optional[str] = None


class VerifyResponse(BaseModel):
    success: bool
    username: Optional[str] = None
    role: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    success: Literal[False] = False
    error: str


class ReadingSummary(BaseModel):
    """Aggregate figures for the readings in a range, excluding "No data"."""

    count: int = Field(..., ge=0)
    excluded: int = Field(0, ge=0)
    average_level: Optional[float] = None
    min_level: Optional[float] = None
    max_level: Optional[float] = None
    consumed_liters: int = Field(0, ge=0)
    first_reading_at: Optional[datetime] = None
    last_reading_at: Optional[datetime] = None


class RecordsSummary(BaseModel):
    success: bool = True
    summary: ReadingSummary
