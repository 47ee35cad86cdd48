"""
Task Tracker
Caller identity.

Credentials are verified before a request reaches the workflow: the JWT
middleware turns a valid bearer token into an ``Identity`` on ``g.identity``
and the engine trusts it as-is.

Provides:
    - Identity: immutable {id, role} value passed into every engine call
    - current_identity(): the identity of the current request, or None
    - require_identity: view decorator answering 401 when no identity is set
"""

import functools
import logging
from dataclasses import dataclass

from flask import g, jsonify, request

from tasktracker.models.auth import ROLES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """An authenticated caller as seen by the workflow engine."""

    id: int
    role: str

    @classmethod
    def from_claims(cls, claims: dict):
        """Build an identity from verified token claims.

        Raises:
            ValueError: when ``sub`` is not an integer id or ``role`` is unknown.
        """
        role = (claims.get("role") or "").strip().lower()
        if role not in ROLES:
            raise ValueError(f"Unknown role '{role}' in token")
        return cls(id=int(claims["sub"]), role=role)


def current_identity():
    return getattr(g, "identity", None)


def require_identity(f):
    """
    Decorator: require an authenticated caller for the endpoint.

    The identity itself is established by the JWT middleware; this only
    refuses the request when there is none.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_identity() is None:
            logger.info("Unauthenticated request to %s", request.path)
            return jsonify({
                "error": "Authentication required. Provide a Bearer token.",
                "code": "ERR_UNAUTHENTICATED",
            }), 401
        return f(*args, **kwargs)

    return decorated
