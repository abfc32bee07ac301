"""
Health check blueprint.

    GET /api/v1/health: 200 with database status, 503 when the database is unreachable
"""

import logging
import time

from flask import Blueprint, jsonify

from actionlog.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
@health_bp.route("/", methods=["GET"])
def health():
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        latency = round((time.perf_counter() - t0) * 1000, 1)
    except Exception as exc:
        logger.error("Health check: database failed: %s", exc)
        db.session.rollback()
        return jsonify({"status": "error", "database": {"status": "error"}}), 503
    return jsonify({
        "status": "ok",
        "app": "Action Log Tracker",
        "database": {"status": "ok", "latency_ms": latency},
    }), 200
