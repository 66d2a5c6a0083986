# backend/pharmacy/routes/system.py
"""
System health and version endpoints.

/health probes every configured database target, reports the last
replication cycle and any recent background-task failures. Connection
details never appear in the response.
"""

import sys
import time

from flask import Blueprint, current_app

from ..db_router import DatabaseTarget, get_router
from ..services.background import get_background_tasks
from ..services.replication_service import get_synchronizer
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_targets() -> dict:
    """
    Probe each configured target.

    The primary being down makes the service unhealthy; a secondary or the
    replica being down only degrades it (reads fall back to the primary).
    """
    start_time = time.time()
    try:
        results = get_router().health_check()
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }

    if not results.get(DatabaseTarget.PRIMARY.value):
        status = "unhealthy"
    elif not all(results.values()):
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": {
            name: ("healthy" if ok else "unhealthy") for name, ok in results.items()
        },
    }


def check_replication() -> dict:
    sync = get_synchronizer()
    report = sync.last_report
    if not sync.enabled:
        return {"status": "healthy", "details": {"enabled": False}}

    details = {
        "enabled": True,
        "running": sync.is_running,
        "interval_seconds": sync.interval_seconds,
        "last_sync": report.to_dict() if report else None,
    }
    if report is not None and not report.success:
        return {"status": "degraded", "warning": "Last sync failed", "details": details}
    return {"status": "healthy", "details": details}


def check_background_tasks() -> dict:
    tasks = get_background_tasks()
    failures = tasks.recent_failures()
    result = {
        "status": "degraded" if failures else "healthy",
        "details": {
            "failure_count": tasks.failure_count,
            "recent_failures": failures[-10:],
        },
    }
    if failures:
        result["warning"] = "Best-effort tasks have failed"
    return result


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: primary database unreachable
    """
    start_time = time.time()

    database_health = check_database_targets()
    replication_health = check_replication()
    background_health = check_background_tasks()

    all_checks = [database_health, replication_health, background_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "databases": database_health,
            "replication": replication_health,
            "background_tasks": background_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info. No keys, credentials or paths."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": current_app.config.get("API_VERSION", "1.0.0"),
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
