"""
api/routes/metrics.py

GET  /api/metrics          — current system metrics snapshot
GET  /api/metrics/report   — aggregated report for 1h / 24h / 7d
GET  /api/metrics/history  — snapshots recorded by the monitor tick
GET  /api/metrics/export   — every retained sample plus all reports
POST /api/metrics/reset    — zero counters and clear samples
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ...service import MonitoringService
from ..serializers import ActionResponse

router = APIRouter(prefix="/metrics", tags=["metrics"])


def _get_service() -> MonitoringService:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_service
    return get_service()


@router.get("")
async def current_metrics(service: MonitoringService = Depends(_get_service)) -> dict:
    return service.aggregator.current_snapshot().to_dict()


@router.get("/report")
async def metrics_report(
    period: Annotated[str, Query()] = "1h",
    service: MonitoringService = Depends(_get_service),
) -> dict:
    try:
        report = service.aggregator.aggregate(period)
    except ValueError:
        raise HTTPException(
            status_code=422, detail=f"Unknown period {period!r} — use 1h, 24h or 7d"
        ) from None
    return report.to_dict()


@router.get("/history")
async def metrics_history(
    since: Annotated[float | None, Query()] = None,
    service: MonitoringService = Depends(_get_service),
) -> list[dict]:
    return [s.to_dict() for s in service.snapshot_history(since=since)]


@router.get("/export")
async def export_metrics(service: MonitoringService = Depends(_get_service)) -> dict:
    return service.aggregator.export()


@router.post("/reset", response_model=ActionResponse)
async def reset_metrics(service: MonitoringService = Depends(_get_service)) -> ActionResponse:
    service.reset()
    return ActionResponse(success=True, message="Metrics reset")
