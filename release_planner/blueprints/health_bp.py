"""
Health probes.

    GET /api/v1/health/ready   process is up
    GET /api/v1/health/live    database round-trip plus reference-data check
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from release_planner.models import db
from release_planner.models.catalog import REFERENCE_LEVELS, PlanReferenceType

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Report database latency and whether plan reference types are seeded.

    Missing reference types do not fail the probe: references that omit a
    type id would be rejected, so the check is informational.
    """
    result = {
        "settings": {
            "concurrency_tolerance_ms": current_app.config.get("PLAN_CONCURRENCY_TOLERANCE_MS"),
            "default_reschedule_type": current_app.config.get("DEFAULT_RESCHEDULE_TYPE_NAME"),
            "testing": current_app.testing,
        },
    }
    try:
        started = time.perf_counter()
        seeded = db.session.execute(
            select(func.count()).select_from(PlanReferenceType)
            .where(PlanReferenceType.name.in_(REFERENCE_LEVELS))
        ).scalar_one()
        result["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        }
        result["reference_types"] = {"seeded": seeded, "expected": len(REFERENCE_LEVELS)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness probe: database unavailable error=%s", exc.__class__.__name__)
        result["database"] = {"status": "error", "detail": exc.__class__.__name__}
        return jsonify({"status": "degraded", "checks": result}), 503

    return jsonify({"status": "healthy", "checks": result}), 200
