"""
Completion review blueprint.

REST surface over the completion workflow engine for Tasks and Projects.
``<kind>`` in the paths below is ``task`` or ``project``; any other value
does not match a route and answers 404.

Endpoint groups:
  Submit        POST  /api/v1/<kind>s/<id>/completion            (JSON or multipart)
  Review        PATCH /api/v1/<kind>s/completion/<request_id>
  Display       GET   /api/v1/<kind>s/<id>/display-status
                GET   /api/v1/<kind>s/display-status?ids=1,2,3
  History       GET   /api/v1/<kind>s/<id>/completion-requests
  Review queue  GET   /api/v1/completion-requests/pending?kind=

Every endpoint requires a bearer token (see middleware/jwt_auth.py).
The engine owns all business rules and commits; this module only parses
input and renders output.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from tasktracker.auth import current_identity, require_identity
from tasktracker.core.exceptions import WorkflowError
from tasktracker.models.work_item import WORK_ITEM_KINDS
from tasktracker.services.attachment_store import LocalAttachmentStore
from tasktracker.services.completion_service import get_workflow
from tasktracker.utils.errors import E, api_error, error_response

logger = logging.getLogger(__name__)

completion_bp = Blueprint("completion", __name__, url_prefix="/api/v1")

# "<any(project, task):kind>s" matches /projects/... and /tasks/...
_KIND = f"<any({', '.join(sorted(WORK_ITEM_KINDS))}):kind>s"

MAX_BATCH_IDS = 200


# ── Error handlers ────────────────────────────────────────────────────────────


@completion_bp.errorhandler(WorkflowError)
def _handle_workflow_error(error: WorkflowError):
    return error_response(error)


@completion_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        code = E.PAYLOAD_TOO_LARGE if error.code == 413 else E.VALIDATION_INVALID
        return api_error(code, error.description or error.name, status=error.code)
    logger.exception("Unexpected error in completion_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Input helpers ─────────────────────────────────────────────────────────────


def _submission_payload() -> tuple[dict, list]:
    """Return (fields, uploaded files) from a JSON or multipart body."""
    if request.files or request.form:
        fields = {
            "evidence": request.form.get("evidence"),
            "notes": request.form.get("notes"),
            "attachments": [],
        }
        return fields, request.files.getlist("attachments")

    data = request.get_json(silent=True) or {}
    return {
        "evidence": data.get("evidence"),
        "notes": data.get("notes"),
        "attachments": data.get("attachments") or [],
    }, []


def _parse_ids(raw: str | None) -> list[int] | None:
    if not raw:
        return None
    try:
        ids = [int(part) for part in raw.split(",") if part.strip()]
    except ValueError:
        return None
    return ids or None


# ═════════════════════════════════════════════════════════════════════════
# Submit / review
# ═════════════════════════════════════════════════════════════════════════


@completion_bp.route(f"/{_KIND}/<int:work_item_id>/completion", methods=["POST"])
@require_identity
def submit_completion(kind, work_item_id):
    """Ask for a work item to be marked Completed.

    Body (JSON): evidence, notes, attachments (list of stored handles)
    Body (multipart): evidence, notes, attachments (files, at most MAX_ATTACHMENTS)
    Returns: the pending CompletionRequest, 201.
    """
    fields, uploads = _submission_payload()

    store = LocalAttachmentStore.from_app()
    handles = store.save_all(uploads, max_count=current_app.config.get("MAX_ATTACHMENTS", 5))
    attachments = handles if uploads else fields["attachments"]

    try:
        result = get_workflow().submit_completion(
            kind,
            work_item_id,
            current_identity(),
            evidence=fields["evidence"],
            notes=fields["notes"],
            attachments=attachments,
        )
    except Exception:
        store.discard(handles)
        raise
    return jsonify(result), 201


@completion_bp.route(f"/{_KIND}/completion/<int:request_id>", methods=["PATCH"])
@require_identity
def review_completion(kind, request_id):
    """Approve or reject a pending completion request.

    Body: decision ("approved" | "rejected"), feedback (optional)
    Returns: the decided CompletionRequest.
    """
    data = request.get_json(silent=True) or {}
    result = get_workflow().review_completion(
        request_id,
        current_identity(),
        data.get("decision"),
        feedback=data.get("feedback"),
        expected_kind=kind,
    )
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Display status
# ═════════════════════════════════════════════════════════════════════════


@completion_bp.route(f"/{_KIND}/<int:work_item_id>/display-status", methods=["GET"])
@require_identity
def display_status(kind, work_item_id):
    status = get_workflow().get_display_status(kind, work_item_id)
    return jsonify({"kind": kind, "id": work_item_id, "display_status": status})


@completion_bp.route(f"/{_KIND}/display-status", methods=["GET"])
@require_identity
def display_statuses(kind):
    """Display status for several items.

    Query params: ids (required, comma-separated, at most MAX_BATCH_IDS)
    Returns: {"kind", "items": [{"id", "display_status"}]}; unknown ids are omitted.
    """
    ids = _parse_ids(request.args.get("ids"))
    if ids is None:
        return api_error(E.VALIDATION_REQUIRED, "ids must be a comma-separated list of integers")
    if len(ids) > MAX_BATCH_IDS:
        return api_error(
            E.VALIDATION_INVALID,
            f"At most {MAX_BATCH_IDS} ids per request",
            details={"ids": len(ids)},
        )

    statuses = get_workflow().get_display_statuses(kind, ids)
    return jsonify({
        "kind": kind,
        "items": [{"id": item_id, "display_status": s} for item_id, s in sorted(statuses.items())],
    })


# ═════════════════════════════════════════════════════════════════════════
# Request history / review queue
# ═════════════════════════════════════════════════════════════════════════


@completion_bp.route(f"/{_KIND}/<int:work_item_id>/completion-requests", methods=["GET"])
@require_identity
def list_completion_requests(kind, work_item_id):
    items = get_workflow().list_completion_requests(kind, work_item_id, current_identity())
    return jsonify({"items": items, "total": len(items)})


@completion_bp.route("/completion-requests/pending", methods=["GET"])
@require_identity
def list_pending_reviews():
    """Pending requests the caller may review, newest first.

    Query params: kind (optional, "task" | "project")
    """
    kind = request.args.get("kind") or None
    items = get_workflow().list_pending_reviews(current_identity(), kind=kind)
    return jsonify({"items": items, "total": len(items)})
