"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready   200 once the app is serving
    GET /api/v1/health/live    database, cache and scheduler status
"""

import logging
import time

from flask import Blueprint, jsonify

from gatepass.models import db
from gatepass.services.cache_service import get_read_cache
from gatepass.services.scheduler_service import get_leave_scheduler

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check for load balancers."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed check; 503 when the database is unreachable."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Read cache ───────────────────────────────────────────────────
    checks["read_cache"] = {"status": "ok", **get_read_cache().get_stats()}

    # ── Leave scheduler (informational; stopped is not unhealthy) ───
    scheduler = get_leave_scheduler()
    checks["leave_scheduler"] = {
        "status": scheduler.state.value,
        "tick_count": scheduler.tick_count,
        "last_run_status": scheduler.last_run["status"] if scheduler.last_run else None,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
