from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .models import DashboardView, RangeOption, serialize_ranges
from .ranges import DEFAULT_RANGE, RANGES, find_range
from .repository import DashboardDataRepository, QueryError, build_repository_from_env
from .service import DataDashboardService

logger = logging.getLogger(__name__)

app = FastAPI(title="Subscription Analytics Dashboard API", version="0.1.0")
repository: Optional[DashboardDataRepository] = build_repository_from_env()


class DashboardResponse(BaseModel):
    data: Dict[str, Any]
    source: str


class RangesResponse(BaseModel):
    default: str
    ranges: List[Dict[str, Any]]


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/ranges", response_model=RangesResponse)
async def ranges_endpoint() -> RangesResponse:
    return RangesResponse(default=DEFAULT_RANGE.label, ranges=serialize_ranges(RANGES))


@app.get("/views/mobile", response_model=DashboardResponse)
async def mobile_view(range_key: Optional[str] = Query(None, alias="range")) -> DashboardResponse:
    option = _resolve_range(range_key)
    repo = _require_repository()
    try:
        results = await repo.aload_mobile(option)
    except QueryError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _respond(DataDashboardService().build_mobile(results), repo)


@app.get("/views/web", response_model=DashboardResponse)
async def web_view(range_key: Optional[str] = Query(None, alias="range")) -> DashboardResponse:
    option = _resolve_range(range_key)
    repo = _require_repository()
    try:
        results = await repo.aload_web(option)
    except QueryError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _respond(DataDashboardService().build_web(results), repo)


def _resolve_range(range_key: Optional[str]) -> RangeOption:
    try:
        return find_range(range_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _require_repository() -> DashboardDataRepository:
    if repository is None:
        raise HTTPException(
            status_code=503,
            detail="Neither DASHBOARD_DATABASE_URL nor POSTHOG_API_KEY is configured.",
        )
    return repository


def _respond(view: DashboardView, repo: DashboardDataRepository) -> DashboardResponse:
    logger.info(
        "Built %s view | range=%s health=%s alerts=%d",
        view.view,
        view.range.label,
        view.health.status,
        len(view.alerts),
    )
    return DashboardResponse(data=view.as_dict(), source=type(repo.executor).__name__)
