from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, Generic, Iterator, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.schemas import ConfigurationVersion, Reading, UserRecord
from models.errors import StorageTimeout, StorageUnavailable
from settings import get_settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _LockedTable:

    def __init__(self, name: str, timeout: Optional[float]) -> None:
        self.name = name
        self.timeout = timeout
        self._lock = Lock()

    @contextmanager
    def _locked(self) -> Iterator[None]:
        acquired = self._lock.acquire(timeout=-1 if self.timeout is None else self.timeout)
        if not acquired:
            raise StorageTimeout(
                f"Timed out after {self.timeout}s waiting for table {self.name!r}."
            )
        try:
            yield
        finally:
            self._lock.release()


class AppendOnlyTable(_LockedTable, Generic[ModelT]):
    """Insert-only collection of immutable records.

    Rows are kept in insertion order and, when a persistence path is set,
    appended to a JSON Lines file. Nothing ever rewrites or removes a row.
    """

    def __init__(
        self,
        name: str,
        model: Type[ModelT],
        persistence_path: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(name, timeout)
        self.model = model
        self.persistence_path = persistence_path
        self._items: list[ModelT] = []
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def append(self, item: ModelT) -> None:
        with self._locked():
            self._write_line(item)
            self._items.append(item)

    def scan(self) -> list[ModelT]:
        with self._locked():
            return list(self._items)

    def latest(self, key: Callable[[ModelT], object]) -> Optional[ModelT]:
        """Return the row with the greatest ``key``; ties go to the later insert."""

        with self._locked():
            best: Optional[ModelT] = None
            for item in self._items:
                if best is None or key(item) >= key(best):  # type: ignore[operator]
                    best = item
            return best

    def count(self) -> int:
        with self._locked():
            return len(self._items)

    def _write_line(self, item: ModelT) -> None:
        if not self.persistence_path:
            return
        try:
            with self.persistence_path.open("a", encoding="utf-8") as handle:
                handle.write(item.model_dump_json() + "\n")
        except OSError as exc:
            raise StorageUnavailable(
                f"Could not append to table {self.name!r}: {exc}"
            ) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            lines = self.persistence_path.read_text(encoding="utf-8").splitlines()
        except OSError:
            lines = []

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                self._items.append(self.model.model_validate_json(line))
            except ValidationError:
                logger.warning(
                    "Skipping unreadable row in %s line %d",
                    self.persistence_path,
                    line_number,
                    extra={"reason": "invalid row"},
                )


class KeyedTable(_LockedTable, Generic[ModelT]):
    """Mutable key/value table persisted as a single JSON document."""

    def __init__(
        self,
        name: str,
        model: Type[ModelT],
        key_field: str,
        persistence_path: Optional[Path] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(name, timeout)
        self.model = model
        self.key_field = key_field
        self.persistence_path = persistence_path
        self._items: Dict[str, ModelT] = {}
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: ModelT) -> None:
        key = str(getattr(item, self.key_field))
        with self._locked():
            items = {**self._items, key: item.model_copy(deep=True)}
            self._persist(items)
            self._items = items

    def get_item(self, key: str) -> Optional[ModelT]:
        with self._locked():
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def scan(self) -> list[ModelT]:
        with self._locked():
            return [item.model_copy(deep=True) for item in self._items.values()]

    def _persist(self, items: Dict[str, ModelT]) -> None:
        if not self.persistence_path:
            return
        payload = {key: item.model_dump(mode="json") for key, item in items.items()}
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise StorageUnavailable(f"Could not write table {self.name!r}: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for key, payload in data.items():
            self._items[key] = self.model.model_validate(payload)


def _path_or_none(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


@lru_cache
def build_readings_table(path: Optional[str] = None) -> AppendOnlyTable[Reading]:
    settings = get_settings()
    table_path = settings.readings_path if path is None else path
    return AppendOnlyTable(
        name="readings",
        model=Reading,
        persistence_path=_path_or_none(table_path),
        timeout=settings.storage_timeout_seconds,
    )


@lru_cache
def build_configurations_table(
    path: Optional[str] = None,
) -> AppendOnlyTable[ConfigurationVersion]:
    settings = get_settings()
    table_path = settings.configurations_path if path is None else path
    return AppendOnlyTable(
        name="configurations",
        model=ConfigurationVersion,
        persistence_path=_path_or_none(table_path),
        timeout=settings.storage_timeout_seconds,
    )


@lru_cache
def build_users_table(path: Optional[str] = None) -> KeyedTable[UserRecord]:
    settings = get_settings()
    table_path = settings.users_path if path is None else path
    return KeyedTable(
        name="users",
        model=UserRecord,
        key_field="username",
        persistence_path=_path_or_none(table_path),
        timeout=settings.storage_timeout_seconds,
    )
