"""
Cost-and-usage report API - FastAPI backend.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Response
from pydantic import BaseModel, Field

from .analytics import (
    AggregationExecutor,
    CostSummary,
    LineItem,
    QueryResult,
    ResourceCost,
    ResourceCostDiscountRecord,
    ResourceEnrichmentPipeline,
    ResourceTotalCost,
    TabularStore,
)
from .analytics.executor import utc_today
from .analytics.sql_compiler import trailing_window
from .config import get_settings
from .domain import ErrorCode
from .ingestion import preview_source
from .services import HealthService

logger = logging.getLogger(__name__)

app = FastAPI(title="CUR Service", version="1.0.0", docs_url="/docs", redoc_url="/redoc", openapi_url="/openapi.json")


# ============================================================================
# Pydantic Models
# ============================================================================

class HealthStatus(BaseModel):
    status: Literal["ok", "error", "unavailable"]
    message: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    backend: HealthStatus
    store: HealthStatus


class SourcePreviewResponse(BaseModel):
    source_path: str
    rows: list[dict[str, Any]]


class LineItemListResponse(BaseModel):
    total: int
    items: list[LineItem]


class ResourceCostListResponse(BaseModel):
    region: str
    window_start: dt.date
    window_end: dt.date
    items: list[ResourceCost]


class ResourceTotalCostListResponse(BaseModel):
    region: str
    window_start: dt.date
    window_end: dt.date
    items: list[ResourceTotalCost]


class CostSummaryResponse(BaseModel):
    region: str
    window_start: dt.date
    window_end: dt.date
    summary: CostSummary


class CostDiscountRequest(BaseModel):
    resource_ids: list[str] = Field(default_factory=list)
    account_ids: list[str] = Field(default_factory=list)


class CostDiscountResponse(BaseModel):
    total: int
    records: list[ResourceCostDiscountRecord]


# ============================================================================
# Service Factories
# ============================================================================

_store: TabularStore | None = None


def _require_store() -> TabularStore:
    if _store is None:
        raise HTTPException(503, {"code": ErrorCode.STORE_UNAVAILABLE, "message": "Line item store is not initialized"})
    return _store


def _executor() -> AggregationExecutor:
    s = get_settings()
    return AggregationExecutor(
        _require_store(),
        cost_window_days=s.cost_window_days,
        discount_window_days=s.discount_window_days,
        cost_30_day_group_cap=s.cost_30_day_group_cap,
    )


def _pipeline() -> ResourceEnrichmentPipeline:
    s = get_settings()
    return ResourceEnrichmentPipeline(
        _executor(),
        max_concurrency=s.enrichment_max_concurrency,
        default_currency=s.default_currency,
    )


def _health_service() -> HealthService:
    return HealthService(_store)


def _parse_date(value: str | None, default: str | dt.date, param: str) -> dt.date:
    raw = value if value is not None else default
    if isinstance(raw, dt.date):
        return raw
    try:
        return dt.date.fromisoformat(raw)
    except ValueError:
        raise HTTPException(400, {"code": ErrorCode.INVALID_DATE, "message": f"Invalid date for '{param}': {raw}"})


def _window(from_date: str | None, until_date: str | None) -> tuple[dt.date, dt.date]:
    s = get_settings()
    return _parse_date(from_date, s.summary_from_date, "from"), _parse_date(until_date, utc_today(), "until")


def _unwrap(result: QueryResult, empty: bool, what: str) -> Any:
    """Map a query outcome to data, 404 or 500."""
    if result.failed:
        raise HTTPException(500, {"code": ErrorCode.QUERY_FAILED, "message": str(result.error)})
    if empty:
        raise HTTPException(404, {"code": ErrorCode.NOT_FOUND, "message": f"No {what} found"})
    return result.data


@app.on_event("startup")
async def startup() -> None:
    global _store
    s = get_settings()
    store = TabularStore(s.db_path, table_name=s.table_name, row_cap=s.scan_row_cap)
    report = await asyncio.to_thread(store.ensure_table, s.source_path)
    logger.info("Line item table '%s' ready with %d row(s)", report.table_name, report.row_count)
    _store = store


# ============================================================================
# Health Routes
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
async def health_check(response: Response) -> HealthResponse:
    r = await _health_service().check_all()
    if not r.healthy:
        response.status_code = 503
    return HealthResponse(backend=HealthStatus(status=r.backend.status, message=r.backend.message, latency_ms=r.backend.latency_ms),
                          store=HealthStatus(status=r.store.status, message=r.store.message, latency_ms=r.store.latency_ms))


# ============================================================================
# Line Item Routes
# ============================================================================

@app.get("/api/source", response_model=SourcePreviewResponse)
async def get_source_preview(limit: int | None = Query(None, ge=1)) -> SourcePreviewResponse:
    s = get_settings()
    cap = s.scan_row_cap if limit is None else min(limit, s.scan_row_cap)
    try:
        rows = await asyncio.to_thread(preview_source, s.source_path, cap)
    except OSError as e:
        raise HTTPException(503, {"code": ErrorCode.SOURCE_UNAVAILABLE, "message": str(e)})
    except ValueError as e:
        raise HTTPException(500, {"code": ErrorCode.QUERY_FAILED, "message": str(e)})
    if not rows:
        raise HTTPException(404, {"code": ErrorCode.NOT_FOUND, "message": "Source file has no rows"})
    return SourcePreviewResponse(source_path=s.source_path, rows=rows)


@app.get("/api/rows", response_model=LineItemListResponse)
async def get_rows(limit: int | None = Query(None, ge=1)) -> LineItemListResponse:
    store = _require_store()
    result = await asyncio.to_thread(store.scan, None, limit)
    items = _unwrap(result, not result.data, "line items")
    return LineItemListResponse(total=len(items), items=items)


@app.get("/api/region/{region}", response_model=LineItemListResponse)
async def get_region_rows(region: str) -> LineItemListResponse:
    result = await asyncio.to_thread(_executor().by_region, region)
    items = _unwrap(result, not result.data, f"line items for region {region}")
    return LineItemListResponse(total=len(items), items=items)


# ============================================================================
# Cost Routes
# ============================================================================

@app.get("/api/costs/region/{region}", response_model=ResourceCostListResponse)
async def get_region_cost_30_days(region: str) -> ResourceCostListResponse:
    s = get_settings()
    start, end = trailing_window(utc_today(), s.cost_window_days)
    result = await asyncio.to_thread(_executor().cost_30_days, region)
    items = _unwrap(result, not result.data, f"costs for region {region}")
    return ResourceCostListResponse(region=region, window_start=start, window_end=end, items=items)


@app.get("/api/costs/region/{region}/resources", response_model=ResourceTotalCostListResponse)
async def get_region_resource_totals(
    region: str,
    from_date: str | None = Query(None, alias="from"),
    until_date: str | None = Query(None, alias="until"),
) -> ResourceTotalCostListResponse:
    start, end = _window(from_date, until_date)
    result = await asyncio.to_thread(_executor().total_cost_between, region, start, end)
    items = _unwrap(result, not result.data, f"costs for region {region} between {start} and {end}")
    return ResourceTotalCostListResponse(region=region, window_start=start, window_end=end, items=items)


@app.get("/api/costs/region/{region}/total", response_model=CostSummaryResponse)
async def get_region_cost_summary(
    region: str,
    from_date: str | None = Query(None, alias="from"),
    until_date: str | None = Query(None, alias="until"),
) -> CostSummaryResponse:
    start, end = _window(from_date, until_date)
    result = await asyncio.to_thread(_executor().cost_summary_between, region, start, end)
    summary = _unwrap(result, result.data.is_empty, f"line items for region {region} between {start} and {end}")
    return CostSummaryResponse(region=region, window_start=start, window_end=end, summary=summary)


# ============================================================================
# Resource Enrichment Routes
# ============================================================================

@app.get("/api/resources/cost-discount-info", response_model=CostDiscountResponse)
async def get_cost_discount_info() -> CostDiscountResponse:
    records = await _pipeline().enrich_all()
    if not records:
        raise HTTPException(404, {"code": ErrorCode.NOT_FOUND, "message": "No resources found"})
    return CostDiscountResponse(total=len(records), records=records)


@app.post("/api/resources/cost-discount-info", response_model=CostDiscountResponse)
async def post_cost_discount_info(payload: CostDiscountRequest) -> CostDiscountResponse:
    records = await _pipeline().enrich(payload.resource_ids, payload.account_ids)
    if not records:
        raise HTTPException(404, {"code": ErrorCode.NOT_FOUND, "message": "No resource ids given"})
    return CostDiscountResponse(total=len(records), records=records)


@app.get("/")
async def root() -> dict:
    s = get_settings()
    return {"service": "cur-service", "status": "ok", "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(), "table_name": s.table_name}
