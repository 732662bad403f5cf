"""
api/main.py

FastAPI application factory.

The MonitoringService is registered once with set_service() (create_app
does this when given one); routes and middleware reach it through
get_service(). Service lifecycle (start/stop) belongs to the caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.websockets import WebSocketDisconnect

from .middleware import MonitoringMiddleware, SecurityMiddleware
from .routes import alerts as alerts_router
from .routes import metrics as metrics_router
from .routes import security as security_router
from .ws_manager import ws_manager

if TYPE_CHECKING:
    from ..service import MonitoringService

logger = logging.getLogger(__name__)

_service: "MonitoringService | None" = None


def set_service(service: "MonitoringService") -> None:
    global _service
    _service = service


def get_service() -> "MonitoringService":
    if _service is None:
        raise RuntimeError("MonitoringService not initialised — call set_service() first")
    return _service


def create_app(service: "MonitoringService | None" = None) -> FastAPI:
    if service is not None:
        set_service(service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="PulseWatch — Runtime Monitoring & Threat Scoring",
        version="1.0.0",
        description="Request metrics, threshold alerting and per-source threat profiles",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Last added runs first: blocked sources are turned away before inspection.
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(MonitoringMiddleware)

    app.include_router(metrics_router.router,  prefix="/api")
    app.include_router(alerts_router.router,   prefix="/api")
    app.include_router(security_router.router, prefix="/api")

    @app.websocket("/ws/alerts")
    async def ws_alerts(websocket: WebSocket):
        await ws_manager.connect(websocket, "alerts")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await ws_manager.disconnect(websocket, "alerts")

    @app.get("/health")
    async def health() -> dict:
        snapshot = get_service().aggregator.current_snapshot()
        return {
            "status": "ok",
            "uptime": snapshot.uptime_seconds,
            "active_alerts": len(get_service().engine.active_alerts()),
            "ws_connections": ws_manager.all_counts(),
        }

    return app
