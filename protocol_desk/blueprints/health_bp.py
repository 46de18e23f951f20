"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  simple 200 for load balancers
    GET /api/v1/health/live   backend readability and record count
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from protocol_desk.core.exceptions import PersistenceError
from protocol_desk.services.protocol_store import get_store

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check: can the persistence backend be read?"""
    checks = {}
    overall = True
    store = get_store()

    # ── Persistence backend ──────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        records = store.backend.load_all()
        backend_ms = (time.perf_counter() - t0) * 1000
        checks["backend"] = {
            "status": "ok",
            "kind": getattr(store.backend, "kind", "custom"),
            "records": len(records),
            "latency_ms": round(backend_ms, 1),
        }
    except PersistenceError as exc:
        checks["backend"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: backend failed: %s", exc)

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Protocol Desk",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
