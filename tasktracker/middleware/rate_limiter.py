"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in tasktracker/__init__.py with no default
limits; this module applies granular limits per blueprint.

Usage:
    from tasktracker.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

COMPLETION_LIMIT = "60/minute"
NOTIFICATION_LIMIT = "200/minute"


def rate_limit_key():
    """Limit key: authenticated user id if available, else remote IP."""
    identity = getattr(g, "identity", None)
    if identity is not None:
        return f"user:{identity.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user, falling back to remote IP):
        - Completion workflow:  60/minute
        - Notifications:        200/minute (polled by the UI)
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("completion")
    if bp:
        limiter.limit(COMPLETION_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("notification")
    if bp:
        limiter.limit(NOTIFICATION_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: completion %s, notifications %s",
        COMPLETION_LIMIT, NOTIFICATION_LIMIT,
    )
