from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest

from app.schemas import Reading
from datastore.tables import AppendOnlyTable
from models.records import ReadingFilters, ReadingStatus
from services.export import DEFAULT_COLUMNS, export_records, render_csv, resolve_columns
from services.query import ReadingQueryService, total_pages


def _reading(
    reading_id: str,
    timestamp: datetime,
    sensor_id: str = "CAP-SENS-001",
    raw_value: float = 50.0,
    status: ReadingStatus = ReadingStatus.normal,
    location: str = "Edificio G - Sor Juana",
) -> Reading:
    return Reading(
        reading_id=reading_id,
        sensor_id=sensor_id,
        raw_value=raw_value,
        volume_liters=int(raw_value * 100),
        status=status,
        location=location,
        configuration_id="v1",
        timestamp=timestamp,
    )


@pytest.fixture
def queries() -> ReadingQueryService:
    table = AppendOnlyTable(name="readings", model=Reading)
    table.append(_reading("r1", datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc), raw_value=4, status=ReadingStatus.critical))
    table.append(_reading("r2", datetime(2025, 3, 1, 23, 59, 59, tzinfo=timezone.utc), sensor_id="CAP-SENS-002", raw_value=12, status=ReadingStatus.warning))
    table.append(_reading("r3", datetime(2025, 3, 2, 0, 0, tzinfo=timezone.utc), raw_value=80))
    table.append(_reading("r4", datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc), raw_value=3, status=ReadingStatus.critical))
    return ReadingQueryService(table=table)


def test_default_order_is_newest_first(queries: ReadingQueryService) -> None:
    records, total = queries.query()

    assert total == 4
    assert [record.reading_id for record in records] == ["r4", "r3", "r2", "r1"]


def test_filters_are_combined(queries: ReadingQueryService) -> None:
    filters = ReadingFilters(sensor_id="CAP-SENS-001", status=ReadingStatus.critical)

    records, total = queries.query(filters, sort_order="asc")

    assert total == 2
    assert [record.reading_id for record in records] == ["r1", "r4"]


def test_date_range_includes_whole_days(queries: ReadingQueryService) -> None:
    filters = ReadingFilters(date_from=date(2025, 3, 1), date_to=date(2025, 3, 1))

    records, _ = queries.query(filters)

    assert {record.reading_id for record in records} == {"r1", "r2"}


def test_pagination_and_sorting(queries: ReadingQueryService) -> None:
    first, total = queries.query(page=1, page_size=3, sort_field="raw_value", sort_order="asc")
    second, _ = queries.query(page=2, page_size=3, sort_field="raw_value", sort_order="asc")

    assert total == 4
    assert [record.reading_id for record in first] == ["r4", "r1", "r2"]
    assert [record.reading_id for record in second] == ["r3"]
    assert total_pages(total, 3) == 2
    assert total_pages(0, 20) == 0


def test_unknown_sort_field_falls_back_to_timestamp(queries: ReadingQueryService) -> None:
    records, _ = queries.query(sort_field="bogus")

    assert records[0].reading_id == "r4"
    assert queries.distinct_sensors() == ["CAP-SENS-001", "CAP-SENS-002"]


def test_csv_quotes_commas_and_doubles_quotes() -> None:
    reading = _reading(
        "r1",
        datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc),
        location='Roof, "north" side',
    )

    body = render_csv([reading], ["timestamp", "location", "status"])

    lines = body.splitlines()
    assert lines[0] == "timestamp,location,status"
    assert lines[1] == '2025-03-01T08:30:00+00:00,"Roof, ""north"" side",Normal'


def test_export_json_uses_selected_columns() -> None:
    reading = _reading("r1", datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc))

    exported = export_records(
        [reading],
        fmt="json",
        columns=["sensor_id", "volume_liters"],
        generated_at=datetime(2025, 3, 4, 10, 11, 12, tzinfo=timezone.utc),
    )

    assert exported.media_type == "application/json"
    assert exported.filename == "readings-20250304-101112.json"
    assert json.loads(exported.body) == [{"sensor_id": "CAP-SENS-001", "volume_liters": 5000}]


def test_export_defaults_and_validation() -> None:
    assert resolve_columns(None) == DEFAULT_COLUMNS
    with pytest.raises(ValueError):
        resolve_columns(["timestamp", "password_hash"])
    with pytest.raises(ValueError):
        export_records([], fmt="xlsx")

    exported = export_records([], fmt="CSV")
    assert exported.body == ",".join(DEFAULT_COLUMNS) + "\n"
    assert exported.media_type == "text/csv"


def test_summary_of_empty_range(queries: ReadingQueryService) -> None:
    summary = queries.summarize(ReadingFilters(date_from=date(2025, 4, 1)))

    assert summary.count == 0
    assert summary.excluded == 0
    assert summary.average_level is None
    assert summary.min_level is None
    assert summary.max_level is None
    assert summary.consumed_liters == 0


def test_summary_of_single_reading(queries: ReadingQueryService) -> None:
    summary = queries.summarize(ReadingFilters(date_from=date(2025, 3, 2), date_to=date(2025, 3, 2)))

    assert summary.count == 1
    assert summary.average_level == summary.min_level == summary.max_level == 80
    assert summary.consumed_liters == 0
    assert summary.first_reading_at == summary.last_reading_at == datetime(2025, 3, 2, 0, 0, tzinfo=timezone.utc)


def test_summary_skips_no_data_readings() -> None:
    table = AppendOnlyTable(name="readings", model=Reading)
    table.append(_reading("r1", datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc), raw_value=50))
    sentinel = _reading("r2", datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc), raw_value=-1, status=ReadingStatus.no_data)
    table.append(sentinel.model_copy(update={"volume_liters": 0}))
    table.append(_reading("r3", datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc), raw_value=45))
    table.append(_reading("r4", datetime(2025, 3, 1, 11, 0, tzinfo=timezone.utc), raw_value=90))
    table.append(_reading("r5", datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc), raw_value=85.5))

    summary = ReadingQueryService(table=table).summarize()

    assert summary.count == 4
    assert summary.excluded == 1
    assert summary.min_level == 45
    assert summary.max_level == 90
    assert summary.average_level == 67.63
    # 50 -> 45 and 90 -> 85.5 are drops; the refill to 90 is not.
    assert summary.consumed_liters == 500 + 450


def test_summary_follows_filters_chronologically(queries: ReadingQueryService) -> None:
    summary = queries.summarize(ReadingFilters(sensor_id="CAP-SENS-001"))

    # r1 (4%) -> r3 (80%) -> r4 (3%)
    assert summary.count == 3
    assert summary.consumed_liters == 8000 - 300
