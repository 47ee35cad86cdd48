"""
Task Tracker
Notification Blueprint.

In-app notifications for the authenticated caller.  Notifications are
written by the completion workflow (see services/event_sink.py); this
blueprint only reads them and tracks read state.

Provides:
    GET    /api/v1/notifications                 list (newest first, paginated)
    GET    /api/v1/notifications/unread-count    unread badge count
    PATCH  /api/v1/notifications/<id>/read       mark one read
    POST   /api/v1/notifications/mark-all-read   mark all read
    DELETE /api/v1/notifications/<id>            delete one

A caller can only see or change their own notifications; anyone else's
answers 404.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from tasktracker.auth import current_identity, require_identity
from tasktracker.blueprints import paginate_args
from tasktracker.models import db
from tasktracker.services.notification import NotificationService
from tasktracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.errorhandler(SQLAlchemyError)
def _handle_db_error(error: SQLAlchemyError):
    logger.exception("Database error in notification_bp endpoint=%s", request.endpoint)
    db.session.rollback()
    return api_error(E.DATABASE, "Database error")


@notification_bp.route("/notifications", methods=["GET"])
@require_identity
def list_notifications():
    """List the caller's notifications.

    Query params: unread_only (bool), limit (default 50), offset
    """
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit, offset = paginate_args()
    items, total = NotificationService.list_for_recipient(
        current_identity().id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(current_identity().id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_identity
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_identity().id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH"])
@require_identity
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_identity().id)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
@require_identity
def mark_all_read():
    count = NotificationService.mark_all_read(current_identity().id)
    return jsonify({"marked_read": count})


@notification_bp.route("/notifications/<int:nid>", methods=["DELETE"])
@require_identity
def delete_notification(nid):
    if not NotificationService.delete(nid, current_identity().id):
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify({"deleted": True, "id": nid})
