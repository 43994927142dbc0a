"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready   process is up (load balancer check)
    GET /api/v1/health/live    database round-trip, DMAIC schema, active strategies
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

REQUIRED_TABLES = ("dmaic_projects", "dmaic_fmea_items", "dmaic_solutions", "dmaic_control_checklists")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
        present = set(inspect(db.engine).get_table_names())
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": type(exc).__name__}

    missing = [t for t in REQUIRED_TABLES if t not in present]
    return {
        "status": "error" if missing else "ok",
        "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        "missing_tables": missing,
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """200 when the repository is usable, 503 otherwise."""
    database = _database_check()
    checks = {
        "database": database,
        "workflow": {
            "gate_policy": current_app.config.get("DMAIC_GATE_POLICY", "strict"),
            "solution_scoring": current_app.config.get("DMAIC_SOLUTION_SCORING", "linear"),
        },
    }
    healthy = database["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
