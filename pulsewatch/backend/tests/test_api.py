"""
tests/test_api.py

FastAPI route and middleware tests using TestClient (synchronous).
Each test gets its own MonitoringService without storage, so no real DB
or background task is involved.
"""

from __future__ import annotations

import pytest
from fastapi import HTTPException, Response
from fastapi.testclient import TestClient

from pulsewatch.backend.aggregation import Aggregator
from pulsewatch.backend.api.main import create_app
from pulsewatch.backend.clock import ManualClock
from pulsewatch.backend.engine import AlertRuleEngine
from pulsewatch.backend.models import ResourceSnapshot
from pulsewatch.backend.pipeline import NotificationOutbox
from pulsewatch.backend.security import BruteForceGuard, ThreatProfileTracker
from pulsewatch.backend.service import MonitoringService

# TestClient requests come from this host
CLIENT = "testclient"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def service() -> MonitoringService:
    clock = ManualClock()
    outbox = NotificationOutbox()
    snapshot = ResourceSnapshot(rss=1, vms=1, total=100, used_percent=95.0)
    return MonitoringService(
        aggregator=Aggregator(clock=clock, resource_probe=lambda: snapshot),
        engine=AlertRuleEngine(clock=clock, outbox=outbox),
        tracker=ThreatProfileTracker(clock=clock, outbox=outbox),
        outbox=outbox,
        clock=clock,
        brute_force=BruteForceGuard(threshold=5, clock=clock),
    )


@pytest.fixture
def app(service):
    app = create_app(service)

    @app.get("/private")
    async def private():
        raise HTTPException(status_code=401, detail="Not authenticated")

    @app.get("/cached")
    async def cached():
        return Response(content="{}", media_type="application/json", headers={"X-Cache": "HIT"})

    @app.get("/items/{item_id}")
    async def item(item_id: int):
        return {"id": item_id}

    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def event_types(service: MonitoringService, source: str = CLIENT) -> list[str]:
    profile = service.tracker.get_profile(source)
    return [e.event_type for e in profile.events] if profile else []


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["active_alerts"] == 0


# ---------------------------------------------------------------------------
# /api/metrics
# ---------------------------------------------------------------------------

class TestMetrics:

    def test_current_snapshot(self, client):
        client.get("/health")
        body = client.get("/api/metrics").json()
        assert body["request_count"] == 1
        assert body["memory"]["used_percent"] == 95.0

    def test_report(self, client):
        client.get("/health")
        body = client.get("/api/metrics/report", params={"period": "24h"}).json()
        assert body["period"] == "24h"
        assert body["total_requests"] == 1

    def test_unknown_period_is_422(self, client):
        assert client.get("/api/metrics/report", params={"period": "5m"}).status_code == 422

    def test_history(self, client, service):
        service.refresh()
        assert len(client.get("/api/metrics/history").json()) == 1

    def test_export(self, client):
        body = client.get("/api/metrics/export").json()
        assert set(body["aggregated"]) == {"1h", "24h", "7d"}

    def test_reset(self, client, service):
        client.get("/health")
        resp = client.post("/api/metrics/reset")
        assert resp.json()["success"] is True
        # only the reset request itself, recorded after the reset
        assert service.aggregator.current_snapshot().request_count == 1

    def test_endpoint_recorded_as_route_template(self, client, service):
        client.get("/items/7")
        client.get("/items/8")
        report = service.aggregator.aggregate("1h")
        assert report.top_endpoints[0].endpoint == "/items/{item_id}"
        assert report.top_endpoints[0].count == 2

    def test_cache_header_counted(self, client, service):
        client.get("/cached")
        assert service.aggregator.current_snapshot().cache_hit_rate == 100.0


# ---------------------------------------------------------------------------
# /api/alerts
# ---------------------------------------------------------------------------

class TestAlerts:

    def test_check_fires_and_lists(self, client):
        fired = client.post("/api/alerts/check").json()
        assert "memory-usage-high" in {a["rule_id"] for a in fired}
        active = client.get("/api/alerts").json()
        assert {a["alert_id"] for a in active} == {a["alert_id"] for a in fired}

    def test_check_respects_cooldown(self, client):
        client.post("/api/alerts/check")
        assert client.post("/api/alerts/check").json() == []

    def test_acknowledge_and_resolve(self, client):
        alert_id = client.post("/api/alerts/check").json()[0]["alert_id"]

        resp = client.post(f"/api/alerts/{alert_id}/acknowledge", json={"by": "oncall"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = client.post(f"/api/alerts/{alert_id}/resolve", json={"by": "oncall"})
        assert resp.status_code == 200
        assert alert_id not in {a["alert_id"] for a in client.get("/api/alerts").json()}

        history = client.get("/api/alerts/history").json()
        resolved = next(a for a in history if a["alert_id"] == alert_id)
        assert resolved["resolved"] is True
        assert resolved["acknowledged_by"] == "oncall"

    def test_resolve_without_body(self, client):
        alert_id = client.post("/api/alerts/check").json()[0]["alert_id"]
        assert client.post(f"/api/alerts/{alert_id}/resolve").status_code == 200

    def test_unknown_alert_is_404(self, client):
        assert client.post("/api/alerts/nope/acknowledge", json={"by": "x"}).status_code == 404
        assert client.post("/api/alerts/nope/resolve").status_code == 404

    def test_acknowledge_requires_actor(self, client):
        alert_id = client.post("/api/alerts/check").json()[0]["alert_id"]
        assert client.post(f"/api/alerts/{alert_id}/acknowledge", json={"by": ""}).status_code == 422

    def test_stats(self, client):
        client.post("/api/alerts/check")
        body = client.get("/api/alerts/stats").json()
        assert body["total_active"] >= 1
        assert body["engine"]["evaluations"] == 1


class TestRules:

    RULE = {
        "id": "slow-p50",
        "name": "Slow responses",
        "metric": "avg_response_time",
        "operator": ">",
        "threshold": 500,
        "severity": "high",
    }

    def test_list_default_rules(self, client):
        ids = [r["id"] for r in client.get("/api/alerts/rules").json()]
        assert ids == ["memory-usage-high", "response-time-slow", "error-rate-high", "cache-hit-rate-low"]

    def test_create_rule(self, client):
        resp = client.post("/api/alerts/rules", json=self.RULE)
        assert resp.status_code == 201
        body = resp.json()
        assert body["operator"] == ">"
        assert body["notifications"] == {"email": False, "webhook": False, "log": True}

    def test_duplicate_rule_is_422(self, client):
        client.post("/api/alerts/rules", json=self.RULE)
        assert client.post("/api/alerts/rules", json=self.RULE).status_code == 422

    def test_invalid_operator_is_422(self, client):
        assert client.post("/api/alerts/rules", json={**self.RULE, "operator": "<>"}).status_code == 422

    def test_update_rule(self, client):
        resp = client.patch(
            "/api/alerts/rules/error-rate-high",
            json={"threshold": 2.5, "notifications": {"email": True}},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["threshold"] == 2.5
        assert body["notifications"]["email"] is True
        assert body["metric"] == "error_rate"

    def test_update_unknown_rule_is_404(self, client):
        assert client.patch("/api/alerts/rules/nope", json={"threshold": 1}).status_code == 404

    def test_update_of_rule_removed_meanwhile_is_404(self, client, service, monkeypatch):
        monkeypatch.setattr(service.engine, "get_rule", lambda rule_id: None)
        resp = client.patch("/api/alerts/rules/error-rate-high", json={"threshold": 1})
        assert resp.status_code == 404

    def test_update_invalid_value_is_422(self, client):
        resp = client.patch("/api/alerts/rules/error-rate-high", json={"severity": "apocalyptic"})
        assert resp.status_code == 422

    def test_delete_rule(self, client):
        assert client.delete("/api/alerts/rules/cache-hit-rate-low").status_code == 200
        assert client.delete("/api/alerts/rules/cache-hit-rate-low").status_code == 404


# ---------------------------------------------------------------------------
# /api/security
# ---------------------------------------------------------------------------

class TestSecurity:

    def test_block_and_unblock(self, client, service):
        resp = client.post("/api/security/block", json={"source": "6.6.6.6", "reason": "abuse"})
        assert resp.status_code == 200
        assert resp.json()["is_blocked"] is True
        assert service.tracker.is_blocked("6.6.6.6")

        profile = client.get("/api/security/profiles/6.6.6.6").json()
        assert profile["block_reason"] == "abuse"

        assert client.delete("/api/security/block/6.6.6.6").status_code == 200
        assert client.delete("/api/security/block/6.6.6.6").status_code == 404

    def test_unknown_profile_is_404(self, client):
        assert client.get("/api/security/profiles/9.9.9.9").status_code == 404

    def test_stats(self, client):
        client.post("/api/security/block", json={"source": "6.6.6.6"})
        body = client.get("/api/security/stats").json()
        assert body["blocked_count"] == 1
        assert body["severity_breakdown"]["high"] == 1

    def test_events_from_memory(self, client):
        client.get("/wp-admin/")
        events = client.get("/api/security/events", params={"source": CLIENT}).json()
        assert [e["event_type"] for e in events] == ["SCANNING_ATTEMPT"]

    def test_block_requires_source(self, client):
        assert client.post("/api/security/block", json={"source": ""}).status_code == 422


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class TestMiddleware:

    def test_blocked_source_is_rejected(self, client, service):
        service.tracker.block(CLIENT)
        resp = client.get("/health")
        assert resp.status_code == 403
        assert resp.json()["code"] == "SOURCE_BLOCKED"
        assert event_types(service) == ["BLOCKED_SOURCE_ACCESS_ATTEMPT"]

    def test_scanning_path_recorded_request_continues(self, client, service):
        resp = client.get("/phpmyadmin/index.php")
        assert resp.status_code == 404
        assert event_types(service) == ["SCANNING_ATTEMPT"]

    def test_malicious_query_rejected(self, client, service):
        resp = client.get("/api/metrics", params={"q": "1 UNION SELECT password FROM users"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "MALICIOUS_PAYLOAD_DETECTED"
        profile = service.tracker.get_profile(CLIENT)
        assert profile.events[-1].event_type == "MALICIOUS_QUERY_PAYLOAD"
        assert profile.events[-1].details["field"] == "q"

    def test_malicious_body_rejected(self, client, service):
        resp = client.post(
            "/api/security/block",
            json={"source": "1.1.1.1", "reason": "<script>alert(1)</script>"},
        )
        assert resp.status_code == 400
        assert event_types(service) == ["MALICIOUS_BODY_PAYLOAD"]
        assert not service.tracker.is_blocked("1.1.1.1")

    def test_repeated_payloads_auto_block(self, client, service):
        for _ in range(3):
            client.get("/api/metrics", params={"q": "<script>x</script>"})
        assert service.tracker.is_blocked(CLIENT)
        assert client.get("/health").status_code == 403

    def test_clean_body_passes(self, client):
        resp = client.post("/api/security/block", json={"source": "2.2.2.2", "reason": "spam"})
        assert resp.status_code == 200

    def test_failed_auth_triggers_brute_force_limit(self, client, service):
        for _ in range(6):
            assert client.get("/private").status_code == 401
        assert "BRUTE_FORCE_ATTEMPT" in event_types(service)

        resp = client.get("/health")
        assert resp.status_code == 429
        assert resp.json()["code"] == "BRUTE_FORCE_DETECTED"

    def test_errors_are_counted(self, client, service):
        client.get("/private")
        snapshot = service.aggregator.current_snapshot()
        assert snapshot.error_count == 1
        assert snapshot.active_connections == 0
