# Overview: Flask API routes for system health; database and idempotency store checks.

"""
System health endpoint.

Returns 200 when every dependency answers, 503 when the database does
not. A broken idempotency store only degrades the service (requests
proceed without dedup) so it reports "degraded", not "unhealthy".
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db, get_idempotency_cache
from comanda.time_utils import utcnow


system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "healthy", "latency_ms": round((time.time() - start_time) * 1000, 2)}
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_idempotency_health() -> dict:
    cache = get_idempotency_cache()
    if cache is None:
        return {"status": "disabled"}

    start_time = time.time()
    try:
        cache.get("healthcheck")
        return {
            "status": "healthy",
            "backend": type(cache).__name__,
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        current_app.logger.warning("Idempotency store health check failed", exc_info=True)
        return {"status": "degraded", "backend": type(cache).__name__, "error": "Idempotency store error"}


@system_bp.get("/health")
def health():
    start_time = time.time()

    database_health = check_database_health()
    idempotency_health = check_idempotency_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif idempotency_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "idempotency": idempotency_health,
        },
    }, http_status
