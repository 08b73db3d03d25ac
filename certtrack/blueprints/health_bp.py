"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (DB, reference timezone, tables)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from certtrack.models import db
from certtrack.utils.helpers import reference_tz

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

_TABLES = (
    "students", "certification_processes", "certification_sla",
    "message_templates", "audit_logs",
)


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


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
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Lifecycle tables ─────────────────────────────────────────────
    if overall:
        tables = {}
        for tbl in _TABLES:
            try:
                count = db.session.execute(db.text(f"SELECT COUNT(*) FROM {tbl}")).scalar()
                tables[tbl] = {"status": "ok", "count": count}
            except Exception as exc:
                tables[tbl] = {"status": "error", "detail": str(exc)}
                overall = False
                logger.error("Health check — table %s failed: %s", tbl, exc)
        checks["tables"] = tables

    # ── Reference timezone ───────────────────────────────────────────
    try:
        checks["reference_timezone"] = {"status": "ok", "name": str(reference_tz())}
    except ValueError as exc:
        checks["reference_timezone"] = {"status": "error", "detail": str(exc)}
        overall = False

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Certification Tracker",
        "debug": current_app.debug,
        "testing": current_app.testing,
        "message_transport": current_app.config.get("MESSAGE_TRANSPORT"),
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
