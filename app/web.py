from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.schemas import ReadingStatus
from models.errors import StorageError
from models.records import ReadingFilters
from services.configuration import ConfigurationStore, build_default_configuration_store
from services.ingestor import ReadingIngestor, build_default_ingestor
from services.query import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ReadingQueryService,
    build_default_query_service,
    total_pages,
)
from services.sampling import SamplingScheduler, build_default_scheduler


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

MIN_REFRESH_SECONDS = 5


def get_ingestor() -> ReadingIngestor:
    return build_default_ingestor()


def get_configuration_store() -> ConfigurationStore:
    return build_default_configuration_store()


def get_query_service() -> ReadingQueryService:
    return build_default_query_service()


def get_scheduler() -> SamplingScheduler:
    return build_default_scheduler()


def _unavailable(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Storage unavailable: {exc}",
    )


def _form_filters(
    sensor: Optional[str],
    status_filter: Optional[str],
    date_from: Optional[str],
    date_to: Optional[str],
) -> ReadingFilters:
    # The filter form submits empty strings for "All" and blank dates.
    try:
        return ReadingFilters(
            sensor_id=sensor or None,
            status=ReadingStatus(status_filter) if status_filter else None,
            date_from=date.fromisoformat(date_from) if date_from else None,
            date_to=date.fromisoformat(date_to) if date_to else None,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid filter: {exc}",
        ) from exc


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
async def ui_index(
    request: Request,
    ingestor: ReadingIngestor = Depends(get_ingestor),
    store: ConfigurationStore = Depends(get_configuration_store),
    scheduler: SamplingScheduler = Depends(get_scheduler),
) -> HTMLResponse:
    try:
        reading = ingestor.latest()
    except StorageError as exc:
        raise _unavailable(exc) from exc

    config = store.current_or_default()
    sampling = scheduler.state()
    refresh_seconds = max(config.sampling_interval_ms // 1000, MIN_REFRESH_SECONDS)
    return templates.TemplateResponse(
        request,
        "ui/index.html",
        {
            "reading": reading,
            "config": config,
            "sampling": sampling,
            "should_poll": sampling.running,
            "refresh_seconds": refresh_seconds,
        },
    )


@router.get("/ui/history", name="ui_history", response_class=HTMLResponse)
async def ui_history(
    request: Request,
    sensor: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    queries: ReadingQueryService = Depends(get_query_service),
) -> HTMLResponse:
    filters = _form_filters(sensor, status_filter, date_from, date_to)
    try:
        records, total = queries.query(filters, page=page, page_size=page_size)
        sensors = queries.distinct_sensors()
    except StorageError as exc:
        raise _unavailable(exc) from exc

    return templates.TemplateResponse(
        request,
        "ui/history.html",
        {
            "records": records,
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": total_pages(total, page_size),
            "filters": filters,
            "sensors": sensors,
            "statuses": list(ReadingStatus),
        },
    )


@router.get("/ui/configuration", name="ui_configuration", response_class=HTMLResponse)
async def ui_configuration(
    request: Request,
    store: ConfigurationStore = Depends(get_configuration_store),
) -> HTMLResponse:
    try:
        versions = store.history()
    except StorageError as exc:
        raise _unavailable(exc) from exc

    return templates.TemplateResponse(
        request,
        "ui/configuration.html",
        {
            "config": store.current_or_default(),
            "versions": versions,
        },
    )


@router.get("/ui/reports", name="ui_reports", response_class=HTMLResponse)
async def ui_reports(
    request: Request,
    sensor: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    queries: ReadingQueryService = Depends(get_query_service),
) -> HTMLResponse:
    filters = _form_filters(sensor, None, date_from, date_to)
    try:
        summary = queries.summarize(filters)
        sensors = queries.distinct_sensors()
    except StorageError as exc:
        raise _unavailable(exc) from exc

    return templates.TemplateResponse(
        request,
        "ui/reports.html",
        {
            "summary": summary,
            "filters": filters,
            "sensors": sensors,
        },
    )
