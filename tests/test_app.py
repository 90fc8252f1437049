from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.schemas import ConfigurationVersion, Reading, UserRecord
from datastore.tables import AppendOnlyTable, KeyedTable
from models.errors import StorageUnavailable
from services.auth import AuthService
from services.configuration import ConfigurationStore
from services.ingestor import ReadingIngestor
from services.query import ReadingQueryService
from services.sampling import SamplingScheduler
from settings import get_settings


@dataclass
class Services:
    configurations: ConfigurationStore
    ingestor: ReadingIngestor
    queries: ReadingQueryService
    scheduler: SamplingScheduler
    auth: AuthService


def _factory(instance: Any) -> Callable[[], Any]:
    def build() -> Any:
        return instance

    build.cache_clear = lambda: None  # type: ignore[attr-defined]
    return build


@pytest.fixture
def services(tmp_path) -> Services:
    configurations = ConfigurationStore(
        table=AppendOnlyTable(
            name="configurations",
            model=ConfigurationVersion,
            persistence_path=tmp_path / "configurations.json",
        )
    )
    ingestor = ReadingIngestor(
        table=AppendOnlyTable(
            name="readings", model=Reading, persistence_path=tmp_path / "readings.json"
        ),
        configurations=configurations,
    )
    auth = AuthService(
        users=KeyedTable(
            name="users",
            model=UserRecord,
            key_field="username",
            persistence_path=tmp_path / "users.json",
        )
    )
    auth.create_user("operator", "operator-pass", "Ops", "ops@example.com", role="operator")
    auth.create_user("viewer", "viewer-pass", "View", "view@example.com", role="viewer")
    return Services(
        configurations=configurations,
        ingestor=ingestor,
        queries=ReadingQueryService(table=ingestor.table),
        scheduler=SamplingScheduler(
            ingestor=ingestor,
            configurations=configurations,
            sensor_id="CAP-SENS-001",
            value_source=lambda: 40,
        ),
        auth=auth,
    )


@pytest.fixture
def install(services: Services, monkeypatch) -> Services:
    for module in ("app.api", "app.web"):
        monkeypatch.setattr(f"{module}.build_default_ingestor", _factory(services.ingestor))
        monkeypatch.setattr(
            f"{module}.build_default_configuration_store", _factory(services.configurations)
        )
        monkeypatch.setattr(f"{module}.build_default_query_service", _factory(services.queries))
        monkeypatch.setattr(f"{module}.build_default_scheduler", _factory(services.scheduler))
    monkeypatch.setattr("app.api.build_default_auth_service", _factory(services.auth))
    monkeypatch.setattr("app.main.build_default_scheduler", _factory(services.scheduler))
    return services


@pytest.fixture
def api_client(install: Services, monkeypatch) -> Iterator[TestClient]:
    monkeypatch.setenv("SAMPLING_ENABLED", "false")
    get_settings.cache_clear()

    with TestClient(create_app()) as client:
        yield client

    install.scheduler.stop()
    get_settings.cache_clear()


def _login(client: TestClient, username: str, password: str) -> dict[str, str]:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_lifespan_starts_and_stops_sampling(install: Services, monkeypatch) -> None:
    monkeypatch.setenv("SAMPLING_ENABLED", "true")
    get_settings.cache_clear()

    try:
        with TestClient(create_app()) as client:
            assert install.scheduler.is_running is True
            assert client.get("/api/sampling").json()["interval_ms"] == 10000
        assert install.scheduler.is_running is False
    finally:
        install.scheduler.stop()
        get_settings.cache_clear()


def test_ingest_reading_returns_derived_fields(api_client: TestClient) -> None:
    response = api_client.post("/api/readings", json={"sensorId": "CAP-SENS-001", "rawValue": 8})

    assert response.status_code == 201
    payload = response.json()
    assert payload["persisted"] is True
    assert payload["data"]["volume_liters"] == 800
    assert payload["data"]["status"] == "Warning"
    assert payload["data"]["location"] == "Edificio G - Sor Juana"

    level = api_client.get("/api/level").json()
    assert level["level"] == 8
    assert level["reading"]["reading_id"] == payload["data"]["reading_id"]


@pytest.mark.parametrize(
    "body",
    [
        {"rawValue": 10},
        {"sensorId": "CAP-SENS-001"},
        {"sensorId": "CAP-SENS-001", "rawValue": "ten"},
        {"sensorId": "CAP-SENS-001", "rawValue": 101},
    ],
)
def test_invalid_reading_is_rejected(api_client: TestClient, services: Services, body) -> None:
    response = api_client.post("/api/readings", json=body)

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"]
    assert "detail" not in payload
    assert services.ingestor.table.count() == 0


def test_storage_failure_returns_unpersisted_reading(
    api_client: TestClient, services: Services, monkeypatch
) -> None:
    def unavailable(item: Reading) -> None:
        raise StorageUnavailable("database unreachable")

    monkeypatch.setattr(services.ingestor.table, "append", unavailable)

    response = api_client.post("/api/readings", json={"sensor_id": "CAP-SENS-001", "raw_value": 3})

    assert response.status_code == 202
    payload = response.json()
    assert payload["persisted"] is False
    assert payload["data"]["status"] == "Critical"


def test_level_without_readings(api_client: TestClient) -> None:
    assert api_client.get("/api/level").json() == {"level": None, "reading": None}


def test_configuration_defaults_before_first_save(api_client: TestClient) -> None:
    payload = api_client.get("/api/configuration").json()

    assert payload["version_id"] == "default"
    assert payload["capacity"] == 10000
    assert payload["sampling_interval_ms"] == 10000
    assert api_client.get("/api/configuration/history").json() == []


def test_configuration_save_requires_control_role(api_client: TestClient) -> None:
    anonymous = api_client.post("/api/configuration", json={"capacity": 5000})
    viewer = api_client.post(
        "/api/configuration",
        json={"capacity": 5000},
        headers=_login(api_client, "viewer", "viewer-pass"),
    )
    bogus = api_client.post(
        "/api/configuration",
        json={"capacity": 5000},
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert anonymous.status_code == 401
    assert viewer.status_code == 403
    assert bogus.status_code == 401


def test_configuration_save_appends_version_and_restarts(
    api_client: TestClient, services: Services
) -> None:
    headers = _login(api_client, "operator", "operator-pass")
    first = api_client.post("/api/configuration", json={"capacity": 5000}, headers=headers)
    second = api_client.post(
        "/api/configuration",
        json={"capacity": 6000, "sampling_interval_ms": 60000, "restart_sampling": True},
        headers=headers,
    )

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["durable"] is True
    assert second.json()["sampling_restarted"] is True

    current = api_client.get("/api/configuration").json()
    assert current["capacity"] == 6000
    history = api_client.get("/api/configuration/history").json()
    assert [version["capacity"] for version in history] == [6000, 5000]

    old_id = first.json()["data"]["version_id"]
    assert api_client.get(f"/api/configuration/{old_id}").json()["capacity"] == 5000
    assert api_client.get("/api/configuration/missing").status_code == 404

    sampling = api_client.get("/api/sampling").json()
    assert sampling["running"] is True
    assert sampling["interval_ms"] == 60000


def test_configuration_save_reports_local_only_version(
    api_client: TestClient, services: Services, monkeypatch
) -> None:
    def unavailable(item: ConfigurationVersion) -> None:
        raise StorageUnavailable("database unreachable")

    monkeypatch.setattr(services.configurations.table, "append", unavailable)
    headers = _login(api_client, "operator", "operator-pass")

    response = api_client.post("/api/configuration", json={"capacity": 4000}, headers=headers)

    assert response.status_code == 202
    payload = response.json()
    assert payload["durable"] is False
    assert "not confirmed" in payload["message"]
    assert api_client.get("/api/configuration").json()["capacity"] == 4000


def test_configuration_rejects_non_positive_interval(api_client: TestClient) -> None:
    headers = _login(api_client, "operator", "operator-pass")

    response = api_client.post(
        "/api/configuration", json={"sampling_interval_ms": 0}, headers=headers
    )

    assert response.status_code == 422


def test_sampling_restart_endpoint(api_client: TestClient) -> None:
    assert api_client.post("/api/sampling/restart").status_code == 401

    response = api_client.post(
        "/api/sampling/restart", headers=_login(api_client, "operator", "operator-pass")
    )

    assert response.status_code == 200
    assert response.json()["running"] is True
    assert response.json()["interval_ms"] == 10000


def test_records_filtering_and_pagination(api_client: TestClient) -> None:
    for sensor_id, raw_value in [("CAP-SENS-001", 3), ("CAP-SENS-002", 50), ("CAP-SENS-001", 90)]:
        api_client.post("/api/readings", json={"sensorId": sensor_id, "rawValue": raw_value})

    page = api_client.get("/api/records", params={"sensor": "CAP-SENS-001", "page_size": 1}).json()
    assert page["pagination"] == {"page": 1, "page_size": 1, "total": 2, "total_pages": 2}
    assert page["records"][0]["raw_value"] == 90

    critical = api_client.get("/api/records", params={"status": "Critical"}).json()
    assert [record["raw_value"] for record in critical["records"]] == [3]

    assert api_client.get("/api/records", params={"status": "Unknown"}).status_code == 422


def test_export_csv_download(api_client: TestClient) -> None:
    api_client.post("/api/readings", json={"sensorId": "CAP-SENS-001", "rawValue": 12})

    response = api_client.get(
        "/api/records/export", params={"format": "csv", "columns": "sensor_id,status"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"].startswith('attachment; filename="readings-')
    assert response.text == "sensor_id,status\nCAP-SENS-001,Warning\n"

    bad = api_client.get("/api/records/export", params={"columns": "password"})
    assert bad.status_code == 400


def test_login_failures_share_one_message(api_client: TestClient) -> None:
    wrong_password = api_client.post(
        "/api/auth/login", json={"username": "operator", "password": "nope"}
    )
    unknown_user = api_client.post(
        "/api/auth/login", json={"username": "ghost", "password": "operator-pass"}
    )

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json() == {
        "success": False,
        "error": "Invalid credentials",
    }


def test_verify_and_logout(api_client: TestClient) -> None:
    headers = _login(api_client, "operator", "operator-pass")
    token = headers["Authorization"].split()[1]

    verified = api_client.post("/api/auth/verify", json={"token": token}).json()
    assert verified["success"] is True
    assert verified["role"] == "operator"

    assert api_client.post("/api/auth/logout", headers=headers).json()["detail"] == "Logged out."
    assert api_client.post("/api/auth/verify", json={"token": token}).json()["success"] is False


def test_system_info_and_health(api_client: TestClient, services: Services, monkeypatch) -> None:
    api_client.post("/api/readings", json={"sensorId": "CAP-SENS-001", "rawValue": 50})

    info = api_client.get("/api/system/info").json()
    assert info["status"] == "ok"
    assert info["reading_count"] == 1
    assert info["configuration_versions"] == 0
    assert api_client.get("/health").json() == {"status": "ok"}

    def unavailable() -> int:
        raise StorageUnavailable("database unreachable")

    monkeypatch.setattr(services.queries, "count", unavailable)
    degraded = api_client.get("/api/system/info").json()
    assert degraded["status"] == "degraded"
    assert degraded["storage"] == "unavailable"


def test_dashboard_pages_render(api_client: TestClient, services: Services) -> None:
    empty = api_client.get("/ui")
    assert empty.status_code == 200
    assert "No readings stored yet." in empty.text
    assert 'http-equiv="refresh"' not in empty.text

    services.configurations.save({"critical_threshold": 40, "alert_threshold": 10})
    api_client.post("/api/readings", json={"sensorId": "CAP-SENS-001", "rawValue": 25})

    dashboard = api_client.get("/ui")
    assert "Critical" in dashboard.text
    assert "2,500 L" in dashboard.text

    history = api_client.get("/ui/history", params={"sensor": "CAP-SENS-001"})
    assert history.status_code == 200
    assert "CAP-SENS-001" in history.text

    blank_form = api_client.get(
        "/ui/history", params={"sensor": "", "status": "", "date_from": "", "date_to": ""}
    )
    assert blank_form.status_code == 200
    assert "1 readings" in blank_form.text
    assert api_client.get("/ui/history", params={"status": "Unknown"}).status_code == 400

    configuration = api_client.get("/ui/configuration")
    assert configuration.status_code == 200
    assert "critical threshold is above the alert threshold" in configuration.text


def test_records_summary_and_reports_page(api_client: TestClient) -> None:
    for raw_value in [80, 60, -1, 70, 40]:
        api_client.post("/api/readings", json={"sensorId": "CAP-SENS-001", "rawValue": raw_value})

    summary = api_client.get("/api/records/summary", params={"sensor": "CAP-SENS-001"}).json()
    assert summary["success"] is True
    assert summary["summary"]["count"] == 4
    assert summary["summary"]["excluded"] == 1
    assert summary["summary"]["average_level"] == 62.5
    assert summary["summary"]["min_level"] == 40
    assert summary["summary"]["max_level"] == 80
    assert summary["summary"]["consumed_liters"] == 5000

    empty = api_client.get("/api/records/summary", params={"sensor": "CAP-SENS-009"}).json()
    assert empty["summary"]["count"] == 0
    assert empty["summary"]["average_level"] is None

    page = api_client.get("/ui/reports", params={"sensor": "", "date_from": "", "date_to": ""})
    assert page.status_code == 200
    assert "62.5%" in page.text
    assert "5,000 L" in page.text
    assert '1 "No data" readings left out.' in page.text
    assert api_client.get("/ui/reports", params={"date_from": "yesterday"}).status_code == 400
