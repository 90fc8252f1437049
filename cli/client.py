from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig
from cli.session import SessionManager


class ApiClient:
    """Minimal HTTP client for the cistern service."""

    def __init__(self, config: CLIConfig, session: SessionManager) -> None:
        self._config = config
        self.session = session
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def login(self, username: str, password: str) -> Dict[str, Any]:
        response = self._client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        if response.status_code == 401:
            typer.secho("Invalid credentials.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        self._raise_for_status(response)
        payload = response.json()
        self.session.save_login(payload)
        return payload

    def logout(self) -> None:
        token = self.session.get_token()
        if token:
            self._client.post("/api/auth/logout", headers={"Authorization": f"Bearer {token}"})
        self.session.clear_session()

    def ingest(self, sensor_id: str, raw_value: float) -> Dict[str, Any]:
        return self._request(
            "POST", "/api/readings", json={"sensorId": sensor_id, "rawValue": raw_value}
        )

    def level(self) -> Dict[str, Any]:
        return self._request("GET", "/api/level")

    def get_configuration(self) -> Dict[str, Any]:
        return self._request("GET", "/api/configuration")

    def configuration_history(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/configuration/history")

    def save_configuration(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/configuration", json=fields)

    def restart_sampling(self) -> Dict[str, Any]:
        return self._request("POST", "/api/sampling/restart")

    def records(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("GET", "/api/records", params=_drop_empty(params))

    def summary(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("GET", "/api/records/summary", params=_drop_empty(params))

    def export(self, params: Dict[str, Any]) -> bytes:
        response = self._send("GET", "/api/records/export", params=_drop_empty(params))
        return response.content

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._send(method, path, **kwargs).json()

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if self.session.is_valid():
            headers["Authorization"] = f"Bearer {self.session.get_token()}"
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True
            )
            raise typer.Exit(code=1) from exc

        if response.status_code in (401, 403):
            self.session.clear_session()
            typer.secho(
                "Session missing, expired or not allowed. Run `cistern login` first.",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail: Optional[str] = None
            try:
                payload = exc.response.json()
                detail = payload.get("detail") or payload.get("error")
            except Exception:  # noqa: BLE001 - best effort parsing
                detail = exc.response.text.strip()
            message = (
                f"Request failed with status {exc.response.status_code}: "
                f"{detail or 'no detail provided.'}"
            )
            typer.secho(message, fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc


def _drop_empty(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value not in (None, "")}
