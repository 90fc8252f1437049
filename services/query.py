"""Read-side access to stored readings for history, reports and exports."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Callable, Optional

from app.schemas import Reading, ReadingSummary
from datastore.tables import AppendOnlyTable, build_readings_table
from models.records import ReadingFilters, ReadingStatus

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 500
DEFAULT_SORT_FIELD = "timestamp"

SORT_FIELDS: dict[str, Callable[[Reading], object]] = {
    "timestamp": lambda reading: reading.timestamp,
    "sensor_id": lambda reading: reading.sensor_id,
    "raw_value": lambda reading: reading.raw_value,
    "volume_liters": lambda reading: reading.volume_liters,
    "status": lambda reading: reading.status.value,
    "location": lambda reading: reading.location,
}


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_end(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def matches(reading: Reading, filters: ReadingFilters) -> bool:
    if filters.sensor_id and reading.sensor_id != filters.sensor_id:
        return False
    if filters.status is not None and reading.status != filters.status:
        return False
    if filters.date_from is not None and reading.timestamp < day_start(filters.date_from):
        return False
    if filters.date_to is not None and reading.timestamp > day_end(filters.date_to):
        return False
    return True


class ReadingQueryService:
    """Filtering, sorting and pagination over the readings table."""

    def __init__(self, table: AppendOnlyTable[Reading]) -> None:
        self.table = table

    def select(
        self,
        filters: Optional[ReadingFilters] = None,
        sort_field: str = DEFAULT_SORT_FIELD,
        sort_order: str = "desc",
    ) -> list[Reading]:
        """Every reading matching ``filters``, sorted, without pagination."""

        filters = filters or ReadingFilters()
        selected = [reading for reading in self.table.scan() if matches(reading, filters)]
        key = SORT_FIELDS.get(sort_field, SORT_FIELDS[DEFAULT_SORT_FIELD])
        reverse = sort_order.lower() != "asc"
        # Timestamp first keeps ties in a stable chronological order.
        selected.sort(key=SORT_FIELDS[DEFAULT_SORT_FIELD], reverse=reverse)
        selected.sort(key=key, reverse=reverse)  # type: ignore[arg-type]
        return selected

    def query(
        self,
        filters: Optional[ReadingFilters] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort_field: str = DEFAULT_SORT_FIELD,
        sort_order: str = "desc",
    ) -> tuple[list[Reading], int]:
        """Return one page of matching readings and the total match count."""

        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        selected = self.select(filters, sort_field=sort_field, sort_order=sort_order)
        offset = (page - 1) * page_size
        return selected[offset : offset + page_size], len(selected)

    def summarize(self, filters: Optional[ReadingFilters] = None) -> ReadingSummary:
        """Average, minimum and maximum level plus liters consumed over ``filters``.

        "No data" readings are counted in ``excluded`` and left out of every
        figure. Consumption is the sum of volume drops between consecutive
        readings in chronological order; refills do not offset it.
        """

        selected = self.select(filters, sort_field="timestamp", sort_order="asc")
        readings = [reading for reading in selected if reading.status != ReadingStatus.no_data]
        excluded = len(selected) - len(readings)
        if not readings:
            return ReadingSummary(count=0, excluded=excluded)

        levels = [reading.raw_value for reading in readings]
        consumed = sum(
            max(previous.volume_liters - current.volume_liters, 0)
            for previous, current in zip(readings, readings[1:])
        )
        return ReadingSummary(
            count=len(readings),
            excluded=excluded,
            average_level=_two_places(sum(levels) / len(levels)),
            min_level=min(levels),
            max_level=max(levels),
            consumed_liters=consumed,
            first_reading_at=readings[0].timestamp,
            last_reading_at=readings[-1].timestamp,
        )

    def distinct_sensors(self) -> list[str]:
        return sorted({reading.sensor_id for reading in self.table.scan()})

    def count(self) -> int:
        return self.table.count()


def _two_places(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def total_pages(total: int, page_size: int) -> int:
    if total <= 0:
        return 0
    return (total + page_size - 1) // page_size


@lru_cache
def build_default_query_service() -> ReadingQueryService:
    return ReadingQueryService(table=build_readings_table())
