# app/routes/health.py
"""
Health check endpoints with database pool and reminder job monitoring.
"""

import time

from fastapi import APIRouter

from app.config import settings
from app.db.pool import db_health_check
from app.jobs.booking_reminder_job import booking_reminder_job_health

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "booking-reminders"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering the database pool, the reminder job and
    required configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if "warnings" in db_health:
            checks["database"]["warnings"] = db_health["warnings"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Reminder job (not overdue)
    job_health = booking_reminder_job_health()
    checks["booking_reminder_job"] = {
        "ok": job_health["healthy"],
        "last_run_time": job_health["last_run_time"],
    }
    if "warning" in job_health:
        checks["booking_reminder_job"]["warning"] = job_health["warning"]
    overall_ok = overall_ok and job_health["healthy"]

    # 3) Configuration
    config_issues = []
    if not settings.CRON_API_KEY:
        config_issues.append("CRON_API_KEY not set")
    if not settings.EMAIL_API_URL and settings.environment == "production":
        config_issues.append("EMAIL_API_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
