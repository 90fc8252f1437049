from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_STATUS_COLORS = {
    "Critical": typer.colors.RED,
    "Warning": typer.colors.YELLOW,
    "Normal": typer.colors.GREEN,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def echo_status(status: str) -> None:
    typer.secho(f"status: {status}", fg=_STATUS_COLORS.get(status))


def render_reading(reading: Dict[str, Any]) -> None:
    echo_heading("Reading")
    echo_key_values(
        [
            ("sensor_id", reading.get("sensor_id")),
            ("raw_value", reading.get("raw_value")),
            ("volume_liters", reading.get("volume_liters")),
            ("location", reading.get("location")),
            ("timestamp", reading.get("timestamp")),
        ]
    )
    echo_status(str(reading.get("status")))


def render_configuration(config: Dict[str, Any]) -> None:
    echo_heading("Configuration")
    echo_key_values(
        [
            ("version_id", config.get("version_id")),
            ("created_at", config.get("created_at")),
            ("cistern_name", config.get("cistern_name")),
            ("capacity", config.get("capacity")),
            ("cistern_location", config.get("cistern_location")),
            ("cistern_material", config.get("cistern_material")),
            ("sensor_id", config.get("sensor_id")),
            ("sensor_model", config.get("sensor_model")),
            ("sensor_precision", config.get("sensor_precision")),
            ("sensor_installed_on", config.get("sensor_installed_on")),
            ("sampling_interval_ms", config.get("sampling_interval_ms")),
            ("alert_threshold", config.get("alert_threshold")),
            ("critical_threshold", config.get("critical_threshold")),
        ]
    )


def render_history(versions: List[Dict[str, Any]]) -> None:
    echo_heading("Configuration history")
    if not versions:
        typer.echo("No configuration saved yet; defaults are in use.")
        return
    for version in versions:
        typer.echo(
            f"  - {version.get('created_at')} {version.get('version_id')} "
            f"capacity={version.get('capacity')} "
            f"critical={version.get('critical_threshold')} "
            f"alert={version.get('alert_threshold')} "
            f"interval_ms={version.get('sampling_interval_ms')}"
        )


def render_records(payload: Dict[str, Any]) -> None:
    pagination = payload.get("pagination") or {}
    echo_heading(
        f"Readings (page {pagination.get('page')} of {pagination.get('total_pages')}, "
        f"{pagination.get('total')} total)"
    )
    records = payload.get("records") or []
    if not records:
        typer.echo("No readings found.")
        return
    for record in records:
        typer.echo(
            f"  {record.get('timestamp')}  {record.get('sensor_id')}  "
            f"{record.get('raw_value')}%  {record.get('volume_liters')} L  "
            f"{record.get('status')}  {record.get('location')}"
        )


def render_sampling(state: Dict[str, Any]) -> None:
    echo_heading("Sampling")
    echo_key_values(
        [
            ("running", state.get("running")),
            ("interval_ms", state.get("interval_ms")),
            ("simulation", state.get("simulation")),
            ("ticks", state.get("ticks")),
            ("failures", state.get("failures")),
        ]
    )


def render_summary(payload: Dict[str, Any]) -> None:
    summary = payload.get("summary") or {}
    echo_heading("Report")
    if not summary.get("count"):
        typer.echo("No readings with data in this range.")
    else:
        echo_key_values(
            [
                ("average_level", summary.get("average_level")),
                ("min_level", summary.get("min_level")),
                ("max_level", summary.get("max_level")),
                ("consumed_liters", summary.get("consumed_liters")),
                ("readings", summary.get("count")),
            ]
        )
    if summary.get("excluded"):
        typer.echo(f"excluded (no data): {summary.get('excluded')}")
