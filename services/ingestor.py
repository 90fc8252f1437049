"""Turns raw sensor percentages into persisted, fully derived readings."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from functools import lru_cache
from numbers import Real
from typing import Any, Optional
from uuid import uuid4

from app.schemas import Reading
from datastore.tables import AppendOnlyTable, build_readings_table
from models.errors import ReadingValidationError, StorageError
from models.records import NO_DATA_SENTINEL
from services.configuration import ConfigurationStore, build_default_configuration_store
from services.derivation import derive

logger = logging.getLogger(__name__)

MIN_LEVEL = 0.0
MAX_LEVEL = 100.0


def _reading_timestamp(reading: Reading) -> datetime:
    return reading.timestamp


class ReadingIngestor:
    """Validates, derives and stores one reading per call."""

    def __init__(
        self,
        table: AppendOnlyTable[Reading],
        configurations: ConfigurationStore,
    ) -> None:
        self.table = table
        self.configurations = configurations

    def ingest(self, sensor_id: Any, raw_value: Any) -> Reading:
        """Persist a reading for ``sensor_id`` at ``raw_value`` percent.

        Raises ``ReadingValidationError`` for malformed input and
        ``StorageError`` when the write fails. In the latter case the derived,
        unpersisted reading is attached to the exception.
        """

        sensor = self._validate_sensor_id(sensor_id)
        value = self._validate_raw_value(raw_value)

        config = self.configurations.current()
        derived = derive(sensor, value, config)
        reading = Reading(
            reading_id=uuid4().hex,
            sensor_id=sensor,
            raw_value=value,
            volume_liters=derived.volume_liters,
            status=derived.status,
            location=derived.location,
            configuration_id=config.version_id if config is not None else None,
            timestamp=datetime.now(timezone.utc),
        )

        try:
            self.table.append(reading)
        except StorageError as exc:
            logger.warning(
                "Reading not persisted",
                extra={"sensor_id": sensor, "raw_value": value, "reason": str(exc)},
            )
            raise StorageError(str(exc), reading=reading) from exc

        logger.info(
            "Reading stored",
            extra={
                "sensor_id": sensor,
                "raw_value": value,
                "status": reading.status.value,
                "volume_liters": reading.volume_liters,
            },
        )
        return reading

    def latest(self) -> Optional[Reading]:
        return self.table.latest(key=_reading_timestamp)

    @staticmethod
    def _validate_sensor_id(sensor_id: Any) -> str:
        if not isinstance(sensor_id, str) or not sensor_id.strip():
            raise ReadingValidationError("sensor_id is required.")
        return sensor_id.strip()

    @staticmethod
    def _validate_raw_value(raw_value: Any) -> float:
        if raw_value is None:
            raise ReadingValidationError("raw_value is required.")
        if isinstance(raw_value, bool):
            raise ReadingValidationError("raw_value must be numeric.")
        if isinstance(raw_value, str):
            candidate = raw_value.strip()
            if not candidate:
                raise ReadingValidationError("raw_value is required.")
            try:
                value = float(candidate)
            except ValueError as exc:
                raise ReadingValidationError("raw_value must be numeric.") from exc
        elif isinstance(raw_value, Real):
            value = float(raw_value)
        else:
            raise ReadingValidationError("raw_value must be numeric.")

        if not math.isfinite(value):
            raise ReadingValidationError("raw_value must be a finite number.")
        if value == NO_DATA_SENTINEL:
            return value
        if not MIN_LEVEL <= value <= MAX_LEVEL:
            raise ReadingValidationError(
                f"raw_value must be between {MIN_LEVEL:g} and {MAX_LEVEL:g} (got {value:g})."
            )
        return value


@lru_cache
def build_default_ingestor() -> ReadingIngestor:
    """Factory that wires the ingestor with the configured tables."""
    return ReadingIngestor(
        table=build_readings_table(),
        configurations=build_default_configuration_store(),
    )
