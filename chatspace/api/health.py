"""Health check endpoints.

/health/live   - Liveness probe: is the process up?
/health/ready  - Readiness probe: is the plugin runtime loaded?
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Request

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict:
    """Liveness probe - always returns 200 if the process is running."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/ready")
async def readiness(request: Request) -> dict:
    """Readiness probe - reports loaded and failed plugins."""
    manager = getattr(request.app.state, "plugin_manager", None)
    is_ready = manager is not None
    return {
        "status": "ready" if is_ready else "not_ready",
        "plugins": len(manager.get_loaded_plugins()) if is_ready else 0,
        "failed_plugins": sorted(manager.failed_plugins) if is_ready else [],
        "timestamp": datetime.now(UTC).isoformat(),
    }
