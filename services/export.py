"""CSV and JSON renderings of stored readings."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from app.schemas import Reading

EXPORT_COLUMNS = (
    "timestamp",
    "sensor_id",
    "raw_value",
    "volume_liters",
    "status",
    "location",
    "configuration_id",
    "reading_id",
)
DEFAULT_COLUMNS = EXPORT_COLUMNS[:6]
FORMATS = {"csv": "text/csv", "json": "application/json"}


@dataclass(frozen=True)
class ExportFile:
    body: str
    media_type: str
    filename: str


def resolve_columns(columns: Optional[Sequence[str]]) -> tuple[str, ...]:
    if not columns:
        return DEFAULT_COLUMNS
    requested = tuple(column.strip() for column in columns if column.strip())
    unknown = sorted(set(requested) - set(EXPORT_COLUMNS))
    if unknown:
        raise ValueError(f"Unknown export columns: {', '.join(unknown)}")
    return requested or DEFAULT_COLUMNS


def _cell(reading: Reading, column: str) -> object:
    value = getattr(reading, column)
    if isinstance(value, datetime):
        return value.isoformat()
    if column == "status":
        return reading.status.value
    return value


def render_csv(readings: Iterable[Reading], columns: Sequence[str]) -> str:
    buffer = io.StringIO()
    # QUOTE_MINIMAL quotes cells holding a comma or quote and doubles inner quotes.
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(columns)
    for reading in readings:
        cells = [_cell(reading, column) for column in columns]
        writer.writerow(["" if cell is None else cell for cell in cells])
    return buffer.getvalue()


def render_json(readings: Iterable[Reading], columns: Sequence[str]) -> str:
    rows = [{column: _cell(reading, column) for column in columns} for reading in readings]
    return json.dumps(rows, ensure_ascii=False, indent=2)


def export_records(
    readings: Iterable[Reading],
    fmt: str = "csv",
    columns: Optional[Sequence[str]] = None,
    generated_at: Optional[datetime] = None,
) -> ExportFile:
    """Render ``readings`` as a downloadable file."""

    fmt = fmt.lower()
    if fmt not in FORMATS:
        raise ValueError(f"Unsupported export format {fmt!r}; use csv or json.")
    selected = resolve_columns(columns)
    stamp = (generated_at or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
    body = render_csv(readings, selected) if fmt == "csv" else render_json(readings, selected)
    return ExportFile(
        body=body,
        media_type=FORMATS[fmt],
        filename=f"readings-{stamp}.{fmt}",
    )
