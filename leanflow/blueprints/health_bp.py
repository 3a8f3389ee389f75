"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        liveness, always 200 while the app runs
    GET /api/v1/health/ready  readiness with a database round-trip
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from leanflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def live():
    return jsonify({"status": "ok", "app": "Lean Future-State Studio"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe: 503 when the database is unreachable."""
    checks = {}
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        }
        healthy = True
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        logger.error("Health check: database failed: %s", exc)
        healthy = False

    checks["app"] = {"testing": current_app.testing,
                     "model": current_app.config.get("LLM_DEFAULT_CHAT_MODEL")}
    return jsonify({"status": "ok" if healthy else "error", "checks": checks}), \
        200 if healthy else 503
