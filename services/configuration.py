"""Versioned cistern configuration.

Saving never edits a stored version; it appends a new one. The current
configuration is whichever version carries the newest ``created_at``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Any, Mapping, Optional, Union
from uuid import uuid4

from app.schemas import ConfigurationUpdate, ConfigurationVersion
from datastore.tables import AppendOnlyTable, build_configurations_table
from models.errors import StorageUnavailable
from models.records import DEFAULT_CONFIGURATION
from services.derivation import default_configuration

logger = logging.getLogger(__name__)

_VERSION_FIELDS = tuple(DEFAULT_CONFIGURATION.keys())


@dataclass(frozen=True)
class SaveOutcome:
    """Result of a save; ``durable`` is False when only the local cache holds it."""

    version: ConfigurationVersion
    durable: bool


def _created_at(version: ConfigurationVersion) -> datetime:
    return version.created_at


class ConfigurationStore:
    """Append-only configuration history with a last-known-good cache."""

    def __init__(self, table: AppendOnlyTable[ConfigurationVersion]) -> None:
        self.table = table
        self._cache_lock = Lock()
        self._last_known: Optional[ConfigurationVersion] = None
        self._unconfirmed: Optional[ConfigurationVersion] = None

    def save(
        self, fields: Union[ConfigurationUpdate, Mapping[str, Any]]
    ) -> SaveOutcome:
        """Append a new configuration version built from ``fields``."""

        if not isinstance(fields, ConfigurationUpdate):
            fields = ConfigurationUpdate.model_validate(dict(fields))

        provided = fields.model_dump(include=set(_VERSION_FIELDS), exclude_none=True)
        values = {**DEFAULT_CONFIGURATION, **provided}

        try:
            stored = self.table.latest(key=_created_at)
        except StorageUnavailable:
            stored = None

        with self._cache_lock:
            version = ConfigurationVersion(
                version_id=uuid4().hex,
                created_at=self._next_timestamp(stored),
                **values,
            )
            try:
                self.table.append(version)
            except StorageUnavailable as exc:
                self._unconfirmed = version
                logger.warning(
                    "Configuration kept locally, storage unavailable",
                    extra={"version_id": version.version_id, "durable": False, "reason": str(exc)},
                )
                return SaveOutcome(version=version, durable=False)

            self._last_known = version
            self._unconfirmed = None

        logger.info(
            "Configuration version saved",
            extra={
                "version_id": version.version_id,
                "interval_ms": version.sampling_interval_ms,
                "durable": True,
            },
        )
        return SaveOutcome(version=version, durable=True)

    def current(self) -> Optional[ConfigurationVersion]:
        """Return the newest version, or ``None`` when nothing was ever saved."""

        try:
            stored = self.table.latest(key=_created_at)
        except StorageUnavailable as exc:
            logger.warning(
                "Using cached configuration, storage unavailable",
                extra={"reason": str(exc)},
            )
            with self._cache_lock:
                return self._newest(self._last_known, self._unconfirmed)

        with self._cache_lock:
            self._last_known = self._newest(self._last_known, stored)
            return self._newest(stored, self._unconfirmed)

    def current_or_default(self) -> ConfigurationVersion:
        return self.current() or default_configuration()

    def history(self) -> list[ConfigurationVersion]:
        """All versions, newest first, including a locally held unconfirmed one."""

        versions = self.table.scan()
        with self._cache_lock:
            if self._unconfirmed is not None:
                versions.append(self._unconfirmed)
        return sorted(versions, key=_created_at, reverse=True)

    def get(self, version_id: str) -> ConfigurationVersion:
        for version in self.history():
            if version.version_id == version_id:
                return version
        raise KeyError(f"Configuration version {version_id!r} not found.")

    def _next_timestamp(self, stored: Optional[ConfigurationVersion]) -> datetime:
        now = datetime.now(timezone.utc)
        newest = self._newest(stored, self._last_known, self._unconfirmed)
        if newest is not None and now <= newest.created_at:
            now = newest.created_at + timedelta(microseconds=1)
        return now

    @staticmethod
    def _newest(
        *versions: Optional[ConfigurationVersion],
    ) -> Optional[ConfigurationVersion]:
        candidates = [version for version in versions if version is not None]
        if not candidates:
            return None
        return max(candidates, key=_created_at)


@lru_cache
def build_default_configuration_store() -> ConfigurationStore:
    return ConfigurationStore(table=build_configurations_table())
