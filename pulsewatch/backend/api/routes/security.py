"""
api/routes/security.py

GET    /api/security/stats
GET    /api/security/profiles/{source}
GET    /api/security/events           — audit log (falls back to in-memory history)
POST   /api/security/block
DELETE /api/security/block/{source}
"""

from __future__ import annotations

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ...service import MonitoringService
from ..serializers import ActionResponse, BlockRequest

router = APIRouter(prefix="/security", tags=["security"])


def _get_service() -> MonitoringService:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_service
    return get_service()


@router.get("/stats")
async def security_stats(
    top: Annotated[int, Query(ge=1, le=100)] = 10,
    service: MonitoringService = Depends(_get_service),
) -> dict:
    return service.tracker.statistics(top_n=top)


@router.get("/profiles/{source}")
async def get_profile(
    source: str,
    service: MonitoringService = Depends(_get_service),
) -> dict:
    profile = service.tracker.get_profile(source)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"No threat profile for {source!r}")
    return profile.to_dict()


@router.get("/events")
async def security_events(
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    source: Annotated[str | None, Query()] = None,
    service: MonitoringService = Depends(_get_service),
) -> list[dict]:
    if service.repository is not None:
        events = await asyncio.to_thread(service.repository.get_recent_events, limit, source)
    else:
        events = service.tracker.recent_events(limit=limit, source=source)
    return [e.to_dict() for e in events]


@router.post("/block")
async def block_source(
    body: BlockRequest,
    service: MonitoringService = Depends(_get_service),
) -> dict:
    return service.tracker.block(body.source, reason=body.reason).to_dict()


@router.delete("/block/{source}", response_model=ActionResponse)
async def unblock_source(
    source: str,
    service: MonitoringService = Depends(_get_service),
) -> ActionResponse:
    if not service.tracker.unblock(source):
        raise HTTPException(status_code=404, detail=f"Source {source!r} is not blocked")
    return ActionResponse(success=True, message=f"Source {source} unblocked")
