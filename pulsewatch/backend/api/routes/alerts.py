"""
api/routes/alerts.py

GET    /api/alerts                     — active alerts
GET    /api/alerts/history             — past and present alerts, newest first
GET    /api/alerts/stats               — registry statistics + engine counters
POST   /api/alerts/check               — evaluate rules now
POST   /api/alerts/{id}/acknowledge
POST   /api/alerts/{id}/resolve
GET    /api/alerts/rules
POST   /api/alerts/rules
PATCH  /api/alerts/rules/{id}
DELETE /api/alerts/rules/{id}
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from ...engine.models import AlertRule, NotificationFlags
from ...errors import InvalidRuleError
from ...service import MonitoringService
from ..serializers import (
    AcknowledgeRequest,
    ActionResponse,
    AlertResponse,
    ResolveRequest,
    RuleCreateRequest,
    RuleResponse,
    RuleUpdateRequest,
)

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _get_service() -> MonitoringService:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_service
    return get_service()


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

@router.get("", response_model=list[AlertResponse])
async def active_alerts(service: MonitoringService = Depends(_get_service)) -> list[AlertResponse]:
    return [AlertResponse.from_alert(a) for a in service.engine.active_alerts()]


@router.get("/history", response_model=list[AlertResponse])
async def alert_history(
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    service: MonitoringService = Depends(_get_service),
) -> list[AlertResponse]:
    return [AlertResponse.from_alert(a) for a in service.engine.alert_history(limit)]


@router.get("/stats")
async def alert_stats(service: MonitoringService = Depends(_get_service)) -> dict:
    return {**service.engine.statistics(), "engine": dict(service.engine.stats)}


@router.post("/check", response_model=list[AlertResponse])
async def check_alerts(service: MonitoringService = Depends(_get_service)) -> list[AlertResponse]:
    return [AlertResponse.from_alert(a) for a in service.check_alerts()]


@router.post("/{alert_id}/acknowledge", response_model=ActionResponse)
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest,
    service: MonitoringService = Depends(_get_service),
) -> ActionResponse:
    if not service.engine.acknowledge(alert_id, by=body.by):
        raise HTTPException(status_code=404, detail=f"Active alert {alert_id!r} not found")
    return ActionResponse(success=True, message="Alert acknowledged")


@router.post("/{alert_id}/resolve", response_model=ActionResponse)
async def resolve_alert(
    alert_id: str,
    body: ResolveRequest | None = None,
    service: MonitoringService = Depends(_get_service),
) -> ActionResponse:
    by = body.by if body is not None else None
    if not service.engine.resolve(alert_id, by=by):
        raise HTTPException(status_code=404, detail=f"Active alert {alert_id!r} not found")
    return ActionResponse(success=True, message="Alert resolved")


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@router.get("/rules", response_model=list[RuleResponse])
async def list_rules(service: MonitoringService = Depends(_get_service)) -> list[RuleResponse]:
    return [RuleResponse.from_rule(r) for r in service.engine.rules()]


@router.post("/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    body: RuleCreateRequest,
    service: MonitoringService = Depends(_get_service),
) -> RuleResponse:
    rule = AlertRule(
        id=body.id,
        name=body.name,
        description=body.description,
        metric=body.metric,
        operator=body.operator,
        threshold=body.threshold,
        severity=body.severity,
        cooldown_seconds=body.cooldown_seconds,
        enabled=body.enabled,
        notifications=NotificationFlags(**body.notifications.model_dump()),
    )
    try:
        stored = service.engine.add_rule(rule)
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    return RuleResponse.from_rule(stored)


@router.patch("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    body: RuleUpdateRequest,
    service: MonitoringService = Depends(_get_service),
) -> RuleResponse:
    try:
        updated = service.engine.update_rule(rule_id, **body.changes())
    except InvalidRuleError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    # the rule can be removed between the update and the read
    rule = service.engine.get_rule(rule_id) if updated else None
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id!r} not found")
    return RuleResponse.from_rule(rule)


@router.delete("/rules/{rule_id}", response_model=ActionResponse)
async def delete_rule(
    rule_id: str,
    service: MonitoringService = Depends(_get_service),
) -> ActionResponse:
    if not service.engine.remove_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id!r} not found")
    return ActionResponse(success=True, message="Rule removed")
