"""
JWT Auth Middleware — parses the bearer token and sets ``g.identity``.

Token issuance happens elsewhere; this hook only verifies what arrives.

  Authorization: Bearer <token>  →  g.identity = Identity(id=<sub>, role=<role>)

An absent, expired or malformed token leaves ``g.identity`` as None; views
decorated with ``require_identity`` then answer 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from tasktracker.auth import Identity
from tasktracker.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.identity = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.identity = Identity.from_claims(payload)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
        except (KeyError, ValueError) as exc:
            logger.warning("Access token with unusable claims on %s: %s", path, exc)
