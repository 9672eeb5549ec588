from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def get_health(request: Request) -> dict[str, Any]:
    settings = request.app.state.settings
    started_at = request.app.state.started_at
    overlay_controller = request.app.state.overlay_controller
    health_poller = request.app.state.health_poller
    realtime_manager = request.app.state.realtime_manager
    overlay_snapshot = overlay_controller.snapshot()
    poller_snapshot = health_poller.snapshot()
    now = datetime.now(timezone.utc)
    uptime_seconds = max(0.0, (now - started_at).total_seconds())

    return {
        "status": "ok",
        "service": settings.service_name,
        "version": settings.service_version,
        "environment": settings.environment,
        "started_at": started_at.isoformat(),
        "uptime_seconds": round(uptime_seconds, 3),
        "checks": {
            "overlay_running": overlay_snapshot["running"],
            "overlay_subscribed": overlay_snapshot["subscribed"],
            "overlay_state": overlay_snapshot["state"],
            "health_enabled": poller_snapshot["health_enabled"],
            "health_running": poller_snapshot["running"],
            "dependency_healthy": poller_snapshot["dependency_healthy"],
            "realtime_running": realtime_manager.running,
        },
    }
