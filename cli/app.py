from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    echo_key_values,
    render_configuration,
    render_history,
    render_reading,
    render_records,
    render_sampling,
    render_summary,
)
from cli.session import FileSessionStore, SessionManager, SessionStore
from services.auth import build_default_auth_service


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient
    session: SessionManager


app = typer.Typer(
    help="Utilities for operating the cistern telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)
config_app = typer.Typer(help="Inspect and save configuration versions.")
sampling_app = typer.Typer(help="Control the sampling scheduler.")
app.add_typer(config_app, name="config")
app.add_typer(sampling_app, name="sampling")


def build_session_store(config: CLIConfig) -> SessionStore:
    return FileSessionStore(config.session_path)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.find_root().obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    session = SessionManager(build_session_store(config))
    client = ApiClient(config, session)
    ctx.obj = CLIState(config=config, client=client, session=session)
    ctx.call_on_close(client.close)


@app.command("login")
def login_command(
    ctx: typer.Context,
    username: str = typer.Option(..., "--username", "-u", prompt=True),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
) -> None:
    """Log in and remember the session token."""
    state = _get_state(ctx)
    payload = state.client.login(username, password)
    user = payload.get("user") or {}
    typer.secho(
        f"Logged in as {user.get('username')} ({user.get('role')}). "
        f"Session expires at {payload.get('expires_at')}.",
        fg=typer.colors.GREEN,
    )


@app.command("logout")
def logout_command(ctx: typer.Context) -> None:
    """Forget the stored session."""
    state = _get_state(ctx)
    state.client.logout()
    typer.echo("Logged out.")


@app.command("whoami")
def whoami_command(ctx: typer.Context) -> None:
    """Show the logged in user, if the session is still valid."""
    state = _get_state(ctx)
    if not state.session.is_valid():
        typer.echo("Not logged in.")
        raise typer.Exit(code=1)
    user = state.session.get_user() or {}
    echo_key_values([("username", user.get("username")), ("role", user.get("role"))])


# A negative raw value ("-1" for no data) must parse as an argument, not an option.
@app.command("ingest", context_settings={"ignore_unknown_options": True})
def ingest_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    raw_value: float = typer.Argument(..., help="Fill level in percent (0-100, -1 for no data)."),
) -> None:
    """Push one reading, as a device would."""
    state = _get_state(ctx)
    payload = state.client.ingest(sensor_id, raw_value)
    render_reading(payload["data"])
    if not payload.get("persisted", True):
        typer.secho(payload.get("message") or "Reading not stored.", fg=typer.colors.YELLOW)


@app.command("level")
def level_command(ctx: typer.Context) -> None:
    """Show the most recent reading."""
    state = _get_state(ctx)
    payload = state.client.level()
    if payload.get("reading") is None:
        typer.echo("No readings stored yet.")
        return
    render_reading(payload["reading"])


@config_app.command("show")
def config_show_command(ctx: typer.Context) -> None:
    """Show the current configuration."""
    state = _get_state(ctx)
    render_configuration(state.client.get_configuration())


@config_app.command("history")
def config_history_command(ctx: typer.Context) -> None:
    """List every saved configuration version."""
    state = _get_state(ctx)
    render_history(state.client.configuration_history())


@config_app.command("save")
def config_save_command(
    ctx: typer.Context,
    cistern_name: Optional[str] = typer.Option(None, "--name"),
    capacity: Optional[int] = typer.Option(None, "--capacity", help="Liters."),
    cistern_location: Optional[str] = typer.Option(None, "--location"),
    cistern_material: Optional[str] = typer.Option(None, "--material"),
    sensor_model: Optional[str] = typer.Option(None, "--sensor-model"),
    sensor_id: Optional[str] = typer.Option(None, "--sensor-id"),
    sensor_installed_on: Optional[datetime] = typer.Option(
        None, "--sensor-installed-on", formats=["%Y-%m-%d"]
    ),
    sensor_precision: Optional[str] = typer.Option(None, "--sensor-precision"),
    sampling_interval_ms: Optional[int] = typer.Option(None, "--interval-ms", min=1),
    alert_threshold: Optional[int] = typer.Option(None, "--alert-threshold"),
    critical_threshold: Optional[int] = typer.Option(None, "--critical-threshold"),
    restart: bool = typer.Option(
        False,
        "--restart/--no-restart",
        help="Restart sampling with the saved interval.",
    ),
) -> None:
    """Save a new configuration version; omitted fields use the defaults."""
    state = _get_state(ctx)
    fields: Dict[str, Any] = {
        "cistern_name": cistern_name,
        "capacity": capacity,
        "cistern_location": cistern_location,
        "cistern_material": cistern_material,
        "sensor_model": sensor_model,
        "sensor_id": sensor_id,
        "sensor_installed_on": sensor_installed_on.date().isoformat() if sensor_installed_on else None,
        "sensor_precision": sensor_precision,
        "sampling_interval_ms": sampling_interval_ms,
        "alert_threshold": alert_threshold,
        "critical_threshold": critical_threshold,
    }
    body = {key: value for key, value in fields.items() if value is not None}
    body["restart_sampling"] = restart

    payload = state.client.save_configuration(body)
    color = typer.colors.GREEN if payload.get("durable") else typer.colors.YELLOW
    typer.secho(payload.get("message", ""), fg=color)
    render_configuration(payload["data"])
    if payload.get("sampling_restarted"):
        typer.echo("Sampling restarted.")


@sampling_app.command("restart")
def sampling_restart_command(ctx: typer.Context) -> None:
    """Reload the sampling interval from the current configuration."""
    state = _get_state(ctx)
    render_sampling(state.client.restart_sampling())


@app.command("records")
def records_command(
    ctx: typer.Context,
    sensor: Optional[str] = typer.Option(None, "--sensor"),
    status: Optional[str] = typer.Option(None, "--status", help="Critical, Warning, Normal or 'No data'."),
    date_from: Optional[datetime] = typer.Option(None, "--from", formats=["%Y-%m-%d"]),
    date_to: Optional[datetime] = typer.Option(None, "--to", formats=["%Y-%m-%d"]),
    page: int = typer.Option(1, "--page", min=1),
    page_size: int = typer.Option(20, "--page-size", min=1, max=500),
    sort_by: str = typer.Option("timestamp", "--sort-by"),
    sort_order: str = typer.Option("desc", "--sort-order"),
) -> None:
    """List stored readings."""
    state = _get_state(ctx)
    payload = state.client.records(
        {
            "sensor": sensor,
            "status": status,
            "date_from": date_from.date().isoformat() if date_from else None,
            "date_to": date_to.date().isoformat() if date_to else None,
            "page": page,
            "page_size": page_size,
            "sort_by": sort_by,
            "sort_order": sort_order,
        }
    )
    render_records(payload)


@app.command("report")
def report_command(
    ctx: typer.Context,
    sensor: Optional[str] = typer.Option(None, "--sensor"),
    date_from: Optional[datetime] = typer.Option(None, "--from", formats=["%Y-%m-%d"]),
    date_to: Optional[datetime] = typer.Option(None, "--to", formats=["%Y-%m-%d"]),
) -> None:
    """Average, minimum and maximum level and consumption over a date range."""
    state = _get_state(ctx)
    payload = state.client.summary(
        {
            "sensor": sensor,
            "date_from": date_from.date().isoformat() if date_from else None,
            "date_to": date_to.date().isoformat() if date_to else None,
        }
    )
    render_summary(payload)


@app.command("export")
def export_command(
    ctx: typer.Context,
    output: Path = typer.Argument(..., dir_okay=False, writable=True, help="Destination file."),
    export_format: str = typer.Option("csv", "--format", help="csv or json."),
    columns: Optional[str] = typer.Option(None, "--columns", help="Comma separated column names."),
    all_data: bool = typer.Option(False, "--all", help="Ignore filters."),
    sensor: Optional[str] = typer.Option(None, "--sensor"),
    status: Optional[str] = typer.Option(None, "--status"),
    date_from: Optional[datetime] = typer.Option(None, "--from", formats=["%Y-%m-%d"]),
    date_to: Optional[datetime] = typer.Option(None, "--to", formats=["%Y-%m-%d"]),
) -> None:
    """Download readings as CSV or JSON."""
    state = _get_state(ctx)
    content = state.client.export(
        {
            "format": export_format,
            "columns": columns,
            "all_data": "true" if all_data else None,
            "sensor": sensor,
            "status": status,
            "date_from": date_from.date().isoformat() if date_from else None,
            "date_to": date_to.date().isoformat() if date_to else None,
        }
    )
    output.write_bytes(content)
    typer.secho(f"Wrote {len(content)} bytes to {output}", fg=typer.colors.GREEN)


@app.command("create-user")
def create_user_command(
    username: str = typer.Option(..., "--username", "-u"),
    name: str = typer.Option(..., "--name"),
    email: str = typer.Option(..., "--email"),
    role: str = typer.Option("viewer", "--role", help="admin, operator or viewer."),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create a user directly in the local users table."""
    try:
        user = build_default_auth_service().create_user(
            username=username, password=password, name=name, email=email, role=role
        )
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho(f"User {user.username} created with role {user.role}.", fg=typer.colors.GREEN)
