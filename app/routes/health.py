"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.postgres import check_db
from app.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "meeting-coordination"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: database reachability, pool statistics and configuration.
    """
    checks = {}
    overall_ok = True
    db = getattr(request.app.state, "db", None)

    # 1) Database reachability and pool stats
    t0 = time.time()
    if db is None:
        checks["database"] = {"ok": False, "error": "Database pool not initialized"}
        overall_ok = False
    elif not db.is_ready:
        checks["database"] = {"ok": False, "error": "Database pool not ready"}
        overall_ok = False
    else:
        result = await check_db(db)
        is_healthy = result is True
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if not is_healthy:
            checks["database"]["error"] = result
        log_health_check(
            "database",
            is_healthy,
            checks["database"]["latency_ms"],
            None if is_healthy else str(result),
        )

        pool_health = await db.health_check()
        if "pool_stats" in pool_health:
            pool_stats = pool_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                    "pool_utilization_percent": pool_stats.get("pool_utilization_percent", 0),
                }
            )
        if "warnings" in pool_health:
            checks["database"]["warnings"] = pool_health["warnings"]
        overall_ok = overall_ok and is_healthy

    # 2) Configuration checks
    config_issues = []
    if not settings.TOKEN_HASHING_SECRET:
        config_issues.append("TOKEN_HASHING_SECRET not set")
    checks["notifications"] = {"ok": True, "mode": "http" if settings.EMAIL_API_URL else "log_only"}

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
