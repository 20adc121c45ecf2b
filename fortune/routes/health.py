"""Liveness and readiness endpoints."""

import time

from fastapi import APIRouter, Depends

from fortune.container import ServiceContainer
from fortune.routes.deps import get_container

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "fortune-engagement"}


@router.get("/readyz")
async def readyz(container: ServiceContainer = Depends(get_container)):
    """Readiness: database pool and job queue."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        db_health = await container.db.health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_utilization_percent"] = db_health["pool_stats"].get(
                "pool_utilization_percent", 0
            )
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    try:
        queue_health = await container.queue.health_check()
        queue_ok = bool(queue_health.get("healthy", False))
        checks["job_queue"] = {"ok": queue_ok}
        if not queue_ok:
            checks["job_queue"]["error"] = queue_health.get("error", "Queue unhealthy")
        overall_ok = overall_ok and queue_ok
    except Exception as e:
        checks["job_queue"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
