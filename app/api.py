"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.schemas import (
    ConfigurationSaveResponse,
    ConfigurationUpdate,
    ConfigurationVersion,
    ErrorResponse,
    IngestRequest,
    IngestResponse,
    LevelResponse,
    LoginRequest,
    LoginResponse,
    Pagination,
    ReadingStatus,
    RecordsPage,
    RecordsSummary,
    SamplingState,
    SystemInfo,
    VerifyRequest,
    VerifyResponse,
)
from models.errors import ReadingValidationError, StorageError, StorageUnavailable
from models.records import ReadingFilters, Session
from services.auth import AuthService, build_default_auth_service
from services.configuration import ConfigurationStore, build_default_configuration_store
from services.export import export_records
from services.ingestor import ReadingIngestor, build_default_ingestor
from services.query import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ReadingQueryService,
    build_default_query_service,
    total_pages,
)
from services.sampling import SamplingScheduler, build_default_scheduler

router = APIRouter()

CONTROL_ROLES = {"admin", "operator"}
INVALID_CREDENTIALS = "Invalid credentials"

optional_bearer = HTTPBearer(auto_error=False)


def get_ingestor() -> ReadingIngestor:
    return build_default_ingestor()


def get_configuration_store() -> ConfigurationStore:
    return build_default_configuration_store()


def get_scheduler() -> SamplingScheduler:
    return build_default_scheduler()


def get_query_service() -> ReadingQueryService:
    return build_default_query_service()


def get_auth_service() -> AuthService:
    return build_default_auth_service()


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    auth: AuthService = Depends(get_auth_service),
) -> Optional[Session]:
    if credentials is None:
        return None
    return auth.verify(credentials.credentials)


def require_control_access(
    session: Optional[Session] = Depends(get_current_session),
) -> Session:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if session.role not in CONTROL_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator or admin role required.",
        )
    return session


def _storage_unavailable(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Storage unavailable: {exc}",
    )


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


def _filters(
    sensor: Optional[str],
    status_filter: Optional[ReadingStatus],
    date_from: Optional[date],
    date_to: Optional[date],
) -> ReadingFilters:
    return ReadingFilters(
        sensor_id=sensor or None,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
    )


@router.post(
    "/api/readings",
    status_code=status.HTTP_201_CREATED,
    response_model=IngestResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Ingest a raw sensor reading.",
)
async def ingest_reading(
    body: IngestRequest,
    response: Response,
    ingestor: ReadingIngestor = Depends(get_ingestor),
) -> Union[IngestResponse, JSONResponse]:
    try:
        reading = ingestor.ingest(body.sensor_id, body.raw_value)
    except ReadingValidationError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))
    except StorageError as exc:
        if exc.reading is None:
            raise _storage_unavailable(exc) from exc
        response.status_code = status.HTTP_202_ACCEPTED
        return IngestResponse(
            success=True,
            persisted=False,
            message="Reading derived but not stored durably.",
            data=exc.reading,
        )
    return IngestResponse(success=True, persisted=True, data=reading)


@router.get(
    "/api/level",
    response_model=LevelResponse,
    summary="Most recent stored reading.",
)
async def current_level(
    ingestor: ReadingIngestor = Depends(get_ingestor),
) -> LevelResponse:
    try:
        reading = ingestor.latest()
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    if reading is None:
        return LevelResponse()
    return LevelResponse(level=reading.raw_value, reading=reading)


@router.get(
    "/api/configuration",
    response_model=ConfigurationVersion,
    summary="Current configuration version (defaults when none saved).",
)
async def current_configuration(
    store: ConfigurationStore = Depends(get_configuration_store),
) -> ConfigurationVersion:
    return store.current_or_default()


@router.post(
    "/api/configuration",
    status_code=status.HTTP_201_CREATED,
    response_model=ConfigurationSaveResponse,
    summary="Save a new configuration version.",
)
def save_configuration(
    body: ConfigurationUpdate,
    response: Response,
    session: Session = Depends(require_control_access),
    store: ConfigurationStore = Depends(get_configuration_store),
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> ConfigurationSaveResponse:
    outcome = store.save(body)
    restarted = False
    if body.restart_sampling:
        scheduler.restart()
        restarted = True

    if outcome.durable:
        message = "Configuration saved."
    else:
        response.status_code = status.HTTP_202_ACCEPTED
        message = "Configuration saved locally, not confirmed by storage. Retry to persist it."
    return ConfigurationSaveResponse(
        success=True,
        durable=outcome.durable,
        message=message,
        sampling_restarted=restarted,
        data=outcome.version,
    )


@router.get(
    "/api/configuration/history",
    response_model=List[ConfigurationVersion],
    summary="All configuration versions, newest first.",
)
async def configuration_history(
    store: ConfigurationStore = Depends(get_configuration_store),
) -> List[ConfigurationVersion]:
    try:
        return store.history()
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/configuration/{version_id}",
    response_model=ConfigurationVersion,
    summary="Fetch one historical configuration version.",
)
async def configuration_version(
    version_id: str,
    store: ConfigurationStore = Depends(get_configuration_store),
) -> ConfigurationVersion:
    try:
        return store.get(version_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Configuration version {version_id!r} not found.",
        ) from exc
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/sampling",
    response_model=SamplingState,
    summary="Sampling scheduler state.",
)
async def sampling_state(
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> SamplingState:
    return scheduler.state()


@router.post(
    "/api/sampling/restart",
    response_model=SamplingState,
    summary="Reload the sampling interval from configuration and restart.",
)
def restart_sampling(
    session: Session = Depends(require_control_access),
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> SamplingState:
    scheduler.restart()
    return scheduler.state()


@router.get(
    "/api/records",
    response_model=RecordsPage,
    summary="Filtered, paginated reading history.",
)
async def list_records(
    sensor: Optional[str] = Query(None, description="Exact sensor id."),
    status_filter: Optional[ReadingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sort_by: str = Query("timestamp"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    queries: ReadingQueryService = Depends(get_query_service),
) -> RecordsPage:
    filters = _filters(sensor, status_filter, date_from, date_to)
    try:
        records, total = queries.query(
            filters,
            page=page,
            page_size=page_size,
            sort_field=sort_by,
            sort_order=sort_order,
        )
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    return RecordsPage(
        records=records,
        pagination=Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=total_pages(total, page_size),
        ),
    )


@router.get(
    "/api/records/export",
    summary="Download readings as CSV or JSON.",
)
async def export_readings(
    export_format: Literal["csv", "json"] = Query("csv", alias="format"),
    columns: Optional[str] = Query(None, description="Comma separated column names."),
    all_data: bool = Query(False, description="Ignore filters and export everything."),
    sensor: Optional[str] = Query(None),
    status_filter: Optional[ReadingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    queries: ReadingQueryService = Depends(get_query_service),
) -> Response:
    filters = ReadingFilters() if all_data else _filters(sensor, status_filter, date_from, date_to)
    try:
        readings = queries.select(filters, sort_field="timestamp", sort_order="desc")
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc

    try:
        exported = export_records(
            readings,
            fmt=export_format,
            columns=columns.split(",") if columns else None,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return Response(
        content=exported.body,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


@router.get(
    "/api/records/summary",
    response_model=RecordsSummary,
    summary="Average, minimum and maximum level and consumption over a range.",
)
async def summarize_records(
    sensor: Optional[str] = Query(None),
    status_filter: Optional[ReadingStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    queries: ReadingQueryService = Depends(get_query_service),
) -> RecordsSummary:
    filters = _filters(sensor, status_filter, date_from, date_to)
    try:
        summary = queries.summarize(filters)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    return RecordsSummary(summary=summary)


@router.post(
    "/api/auth/login",
    response_model=LoginResponse,
    responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}},
    summary="Exchange username and password for a session token.",
)
async def login(
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
) -> Union[LoginResponse, JSONResponse]:
    try:
        result = auth.login(body.username, body.password)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc
    if result is None:
        return _failure(status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIALS)
    return LoginResponse(
        token=result.session.token,
        user=result.user,
        expires_at=result.session.expires_at,
    )


@router.post(
    "/api/auth/verify",
    response_model=VerifyResponse,
    summary="Check whether a session token is still valid.",
)
async def verify_token(
    body: VerifyRequest,
    auth: AuthService = Depends(get_auth_service),
) -> VerifyResponse:
    session = auth.verify(body.token)
    if session is None:
        return VerifyResponse(success=False, error="Invalid or expired token")
    return VerifyResponse(
        success=True,
        username=session.username,
        role=session.role,
        expires_at=session.expires_at,
    )


@router.post(
    "/api/auth/logout",
    summary="End the current session.",
)
async def logout(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    auth: AuthService = Depends(get_auth_service),
) -> dict[str, str]:
    if credentials is not None and auth.logout(credentials.credentials):
        return {"status": "ok", "detail": "Logged out."}
    return {"status": "ok", "detail": "No active session."}


@router.get(
    "/api/system/info",
    response_model=SystemInfo,
    summary="Service, storage and sampling status.",
)
async def system_info(
    queries: ReadingQueryService = Depends(get_query_service),
    store: ConfigurationStore = Depends(get_configuration_store),
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> SystemInfo:
    try:
        reading_count = queries.count()
        versions = len(store.history())
    except StorageUnavailable:
        return SystemInfo(status="degraded", storage="unavailable", sampling=scheduler.state())
    return SystemInfo(
        status="ok",
        storage="ok",
        sampling=scheduler.state(),
        reading_count=reading_count,
        configuration_versions=versions,
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /ui for the dashboard and /health for service status."}
