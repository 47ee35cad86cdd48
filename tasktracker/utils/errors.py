"""Standardised API error responses.

Usage
-----
    from tasktracker.utils.errors import api_error, error_response, E

    return api_error(E.NOT_FOUND, "Task not found")
    return api_error(E.VALIDATION_REQUIRED, "decision is required")
    return error_response(exc)      # any WorkflowError
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention: ERR_ prefix for every code.  The workflow codes mirror the
    ``code`` attribute of the matching exception in ``core/exceptions.py``.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_DECISION = "ERR_INVALID_DECISION"

    # Authentication / permissions – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409
    ALREADY_COMPLETED = "ERR_ALREADY_COMPLETED"
    DUPLICATE_REQUEST = "ERR_DUPLICATE_REQUEST"
    ALREADY_REVIEWED = "ERR_ALREADY_REVIEWED"
    CONFLICT_RETRYABLE = "ERR_CONFLICT_RETRYABLE"

    # Request shape – HTTP 405 / 413
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_DECISION: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.ALREADY_COMPLETED: 409,
    E.DUPLICATE_REQUEST: 409,
    E.ALREADY_REVIEWED: 409,
    E.CONFLICT_RETRYABLE: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    retryable: bool = False,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (ids, current status, etc.).
    retryable : bool, optional
        Adds ``"retryable": true`` so clients know a plain retry may succeed.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details
    if retryable:
        body["retryable"] = True

    return jsonify(body), http_status


def error_response(exc):
    """Render a ``WorkflowError`` with its own code, message and status."""
    return api_error(
        exc.code,
        exc.message,
        status=exc.http_status,
        details=exc.details,
        retryable=exc.retryable,
    )
