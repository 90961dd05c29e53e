"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (database, realtime backend)
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from phasetrack.models import db
from phasetrack.services import realtime

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Readiness check: always 200 while the app is running."""
    return jsonify({"success": True, "data": {"status": "ok", "app": "PhaseTrack"}}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Realtime backend ─────────────────────────────────────────────
    checks["realtime"] = realtime.backend_status()
    if checks["realtime"]["status"] != "ok":
        logger.warning("Health check — realtime backend degraded: %s", checks["realtime"].get("detail"))

    status = "ok" if overall else "degraded"
    return jsonify({"success": overall, "data": {"status": status, "checks": checks}}), 200 if overall else 503
