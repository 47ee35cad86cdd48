"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 once the completion engine is registered
    GET /api/v1/health/live   — dependency report: database, Redis, workflow

``live`` also publishes the role table the engine enforces, so operators can
confirm a ``COMPLETION_ROLE_TABLE`` override took effect.
"""

import logging
import time

import redis as redis_lib
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.models import db
from tasktracker.services.completion_service import EXTENSION_KEY

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _timed(fn):
    t0 = time.perf_counter()
    fn()
    return round((time.perf_counter() - t0) * 1000, 1)


def _check_database():
    try:
        return {"status": "ok", "latency_ms": _timed(lambda: db.session.execute(db.text("SELECT 1")))}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}


def _check_redis():
    # Rate-limit storage; memory:// has nothing to ping.
    redis_url = current_app.config.get("REDIS_URL", "")
    if not redis_url.startswith(("redis://", "rediss://")):
        return {"status": "skipped", "detail": "no REDIS_URL configured"}
    try:
        client = redis_lib.from_url(redis_url, socket_timeout=2)
        return {"status": "ok", "latency_ms": _timed(client.ping)}
    except redis_lib.RedisError as exc:
        return {"status": "error", "detail": str(exc)}


def _check_workflow():
    workflow = current_app.extensions.get(EXTENSION_KEY)
    if workflow is None:
        return {"status": "error", "detail": "completion workflow not initialised"}
    return {
        "status": "ok",
        "event_sink": type(workflow.event_sink).__name__,
        "role_table": workflow.role_gate.as_dict(),
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    if EXTENSION_KEY not in current_app.extensions:
        return jsonify({"status": "starting"}), 503
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        "completion_workflow": _check_workflow(),
    }
    # Redis only degrades rate limiting, not the workflow.
    healthy = all(checks[name]["status"] == "ok" for name in ("database", "completion_workflow"))
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
