"""
api/middleware.py

MonitoringMiddleware — outermost layer:
    - rejects blocked sources with 403 (and records the attempt)
    - rejects sources over the brute-force limit with 429
    - times every request and records a Sample
    - records cache outcomes announced by handlers via an X-Cache header
    - counts 401/403 responses towards the brute-force limit

SecurityMiddleware — runs the request inspectors:
    - scanning patterns in the path        → SCANNING_ATTEMPT (request continues)
    - malicious query / JSON body payloads → 400 and a critical event
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..models import Severity
from ..security.models import (
    BLOCKED_SOURCE_ACCESS_ATTEMPT,
    BRUTE_FORCE_ATTEMPT,
    MALICIOUS_BODY_PAYLOAD,
    MALICIOUS_QUERY_PAYLOAD,
    SCANNING_ATTEMPT,
)

logger = logging.getLogger(__name__)

_FAILED_AUTH_STATUSES = frozenset({401, 403})
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def client_source(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _service():
    from .main import get_service
    return get_service()


class MonitoringMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        service = _service()
        source = client_source(request)
        user_agent = request.headers.get("user-agent")

        if service.tracker.is_blocked(source):
            service.tracker.record(
                source,
                BLOCKED_SOURCE_ACCESS_ATTEMPT,
                Severity.HIGH,
                details={"url": str(request.url.path), "method": request.method},
                user_agent=user_agent,
                action="blocked",
            )
            return JSONResponse(
                status_code=403,
                content={"detail": "Access denied", "code": "SOURCE_BLOCKED"},
            )

        if service.brute_force.exceeded(source):
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many attempts, try again later", "code": "BRUTE_FORCE_DETECTED"},
            )

        service.aggregator.connection_opened()
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            cache = response.headers.get("x-cache", "").upper()
            if cache == "HIT":
                service.aggregator.record_cache_hit()
            elif cache == "MISS":
                service.aggregator.record_cache_miss()
            return response
        finally:
            service.aggregator.connection_closed()
            duration_ms = (time.perf_counter() - start) * 1000
            route = request.scope.get("route")
            endpoint = getattr(route, "path", None) or request.url.path
            service.aggregator.record_request(endpoint, request.method, duration_ms, status_code)

            if status_code in _FAILED_AUTH_STATUSES:
                attempts = service.brute_force.hit(source)
                if attempts > service.brute_force.threshold:
                    service.tracker.record(
                        source,
                        BRUTE_FORCE_ATTEMPT,
                        Severity.HIGH,
                        details={
                            "attempts": attempts,
                            "threshold": service.brute_force.threshold,
                            "window_seconds": service.brute_force.window_seconds,
                            "url": str(request.url.path),
                        },
                        user_agent=user_agent,
                        action="rate_limited",
                    )


class SecurityMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        service = _service()
        source = client_source(request)
        user_agent = request.headers.get("user-agent")
        path = request.url.path
        inspector = service.inspector

        pattern = inspector.scanning_pattern(path)
        if pattern is not None:
            service.tracker.record(
                source,
                SCANNING_ATTEMPT,
                Severity.MEDIUM,
                details={"url": path, "method": request.method, "pattern": pattern},
                user_agent=user_agent,
                action="detected",
            )

        query = dict(request.query_params)
        finding = inspector.find_payload(query)
        if finding is not None:
            service.tracker.record(
                source,
                MALICIOUS_QUERY_PAYLOAD,
                Severity.CRITICAL,
                details={"query": query, "url": path, "field": finding.path, "pattern": finding.pattern},
                user_agent=user_agent,
                action="blocked",
            )
            return _rejected()

        if request.method in _BODY_METHODS and "json" in request.headers.get("content-type", ""):
            raw = await request.body()
            try:
                body = json.loads(raw) if raw else None
            except ValueError:
                body = None
            finding = inspector.find_payload(body) if body is not None else None
            if finding is not None:
                service.tracker.record(
                    source,
                    MALICIOUS_BODY_PAYLOAD,
                    Severity.CRITICAL,
                    details={"url": path, "field": finding.path, "pattern": finding.pattern},
                    user_agent=user_agent,
                    action="blocked",
                )
                return _rejected()

        return await call_next(request)


def _rejected() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "code": "MALICIOUS_PAYLOAD_DETECTED"},
    )
