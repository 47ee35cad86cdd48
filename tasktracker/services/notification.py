"""
Task Tracker
Notification Service.

Central service for creating and querying in-app notifications.  The
completion workflow reaches it through ``NotificationEventSink``; the
notification blueprint uses the query and read-tracking helpers.
"""

from datetime import datetime, timezone

from sqlalchemy import select

from tasktracker.models import db
from tasktracker.models.auth import User
from tasktracker.models.notification import (
    EVENT_COMPLETION_REQUESTED,
    EVENT_COMPLETION_REVIEWED,
    Notification,
)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, event, title, message="", entity_type="", entity_id=None,
               payload=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient_id=recipient_id,
            event=event,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=dict(payload or {}),
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def broadcast(*, recipient_ids, event, title, message="", entity_type="", entity_id=None,
                  payload=None):
        """
        Send the same notification to several users in one commit.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for rid in recipient_ids:
            notif = Notification(
                recipient_id=rid,
                event=event,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=dict(payload or {}),
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Returns None if not the caller's."""
        notif = Notification.query.filter_by(id=notification_id, recipient_id=recipient_id).first()
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count

    @staticmethod
    def delete(notification_id, recipient_id):
        """Delete one of the caller's notifications. Returns False if not found."""
        notif = Notification.query.filter_by(id=notification_id, recipient_id=recipient_id).first()
        if not notif:
            return False
        db.session.delete(notif)
        db.session.commit()
        return True

    # ── Completion workflow helpers ───────────────────────────────────────

    @staticmethod
    def active_user_ids_with_roles(roles):
        """Ids of active users holding any of ``roles``."""
        if not roles:
            return []
        return db.session.execute(
            select(User.id)
            .where(User.role.in_(sorted(roles)), User.is_active.is_(True))
            .order_by(User.id)
        ).scalars().all()

    @staticmethod
    def notify_completion_requested(*, reviewer_ids, kind, work_item_id, work_item_name,
                                    request_id, requester_id):
        """Tell every reviewer of the kind that a completion request is waiting."""
        return NotificationService.broadcast(
            recipient_ids=reviewer_ids,
            event=EVENT_COMPLETION_REQUESTED,
            title=f"Completion requested for {kind} '{work_item_name}'",
            message=f"Completion request #{request_id} is awaiting review.",
            entity_type=kind,
            entity_id=work_item_id,
            payload={"request_id": request_id, "requester_id": requester_id},
        )

    @staticmethod
    def notify_completion_reviewed(*, requester_id, kind, work_item_id, work_item_name,
                                   request_id, decision, reviewer_id):
        """Tell the requester how their completion request was decided."""
        return NotificationService.create(
            recipient_id=requester_id,
            event=EVENT_COMPLETION_REVIEWED,
            title=f"Completion request for {kind} '{work_item_name}' {decision}",
            message=f"Completion request #{request_id} was {decision}.",
            entity_type=kind,
            entity_id=work_item_id,
            payload={"request_id": request_id, "decision": decision, "reviewer_id": reviewer_id},
        )
