"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 whenever the process is serving
    GET /api/v1/health/live   — per-dependency checks; 503 when the database is down

Only the database decides the overall verdict.  Redis (rate-limit storage) and
the workflow collaborators are reported but never fail the probe.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from docflow.models import db
from docflow.services import collaborators

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _timed(fn) -> dict:
    t0 = time.perf_counter()
    fn()
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _check_database() -> dict:
    try:
        return _timed(lambda: db.session.execute(db.text("SELECT 1")))
    except Exception as exc:
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_redis() -> dict:
    redis_url = current_app.config.get("REDIS_URL", "")
    if not redis_url.startswith(("redis://", "rediss://")):
        return {"status": "skipped", "detail": "no REDIS_URL configured"}
    try:
        import redis as redis_lib
    except ImportError:
        return {"status": "skipped", "detail": "redis package not installed"}
    try:
        return _timed(lambda: redis_lib.from_url(redis_url, socket_timeout=2).ping())
    except Exception as exc:
        logger.warning("Health check: redis unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_workflow_runtime() -> dict:
    monitor = collaborators.get("completion_monitor")
    return {
        "completion_monitor": {
            "status": "ok" if monitor.enabled else "disabled",
            "active_documents": monitor.active_documents(),
        },
        "collaborators": {
            "document_store": type(collaborators.get("document_store")).__name__,
            "archival_gateway": type(collaborators.get("archival_gateway")).__name__,
        },
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        **_check_workflow_runtime(),
        "app": {
            "name": "Document Workflow Circuit",
            "debug": current_app.debug,
            "testing": current_app.testing,
        },
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
