"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       — simple 200 for load balancers
    GET /api/v1/health/live  — database round-trip and scheduler job status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from practicehub.models import db
from practicehub.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Readiness probe — always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

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

    checks["jobs"] = SchedulerService.list_jobs()
    checks["app"] = {
        "name": "PracticeHub Core",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
