"""
Completion Workflow — event sinks.

The engine announces workflow events through an injected sink instead of a
process-wide socket handle, so transport lifecycle never leaks into the
workflow logic.

Contract:
    sink.emit(subject, event, payload)

    subject  "<kind>-<work_item_id>", e.g. "task-42" (room-style key)
    event    "completion.requested" | "completion.reviewed"
    payload  JSON-serialisable dict:
             completion.requested {work_item_kind, work_item_id, request_id, requester_id}
             completion.reviewed  {work_item_kind, work_item_id, request_id, decision, reviewer_id,
                                   requester_id}

Sinks are called after the workflow transaction has committed.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from tasktracker.models import db
from tasktracker.models.notification import EVENT_COMPLETION_REQUESTED, EVENT_COMPLETION_REVIEWED
from tasktracker.services import work_item_store
from tasktracker.services.notification import NotificationService
from tasktracker.services.role_gate import RoleGate

logger = logging.getLogger(__name__)


def subject_for(kind: str, work_item_id: int) -> str:
    return f"{kind}-{work_item_id}"


class EventSink:
    """Base sink; subclasses override ``emit``."""

    def emit(self, subject: str, event: str, payload: dict) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    def emit(self, subject: str, event: str, payload: dict) -> None:
        return None


class LoggingEventSink(EventSink):
    """Writes each event to the log with structured extras."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def emit(self, subject: str, event: str, payload: dict) -> None:
        self._log.info(
            "Workflow event %s on %s",
            event,
            subject,
            extra={
                "event": event,
                "work_item_kind": payload.get("work_item_kind"),
                "work_item_id": payload.get("work_item_id"),
                "completion_request_id": payload.get("request_id"),
            },
        )


class CompositeEventSink(EventSink):
    """Fans one event out to several sinks, in order.

    A failing sink is logged and does not stop the remaining ones.
    """

    def __init__(self, sinks):
        self.sinks = list(sinks)

    def emit(self, subject: str, event: str, payload: dict) -> None:
        for sink in self.sinks:
            try:
                sink.emit(subject, event, payload)
            except Exception:
                logger.exception(
                    "Event sink %s failed for %s on %s",
                    type(sink).__name__, event, subject,
                    extra={"event": event},
                )


class NotificationEventSink(EventSink):
    """Records in-app notifications for workflow events.

    completion.requested → every active user holding a reviewer role for the kind
    completion.reviewed  → the original requester
    """

    def __init__(self, role_gate: RoleGate | None = None):
        self.role_gate = role_gate or RoleGate()

    def emit(self, subject: str, event: str, payload: dict) -> None:
        try:
            self._record(subject, event, payload)
        except SQLAlchemyError:
            db.session.rollback()
            raise

    def _record(self, subject: str, event: str, payload: dict) -> None:
        kind = payload["work_item_kind"]
        work_item_id = payload["work_item_id"]
        item = work_item_store.get_work_item(kind, work_item_id)
        name = item.name if item else subject

        if event == EVENT_COMPLETION_REQUESTED:
            reviewer_ids = NotificationService.active_user_ids_with_roles(
                self.role_gate.reviewer_roles(kind)
            )
            NotificationService.notify_completion_requested(
                reviewer_ids=reviewer_ids,
                kind=kind,
                work_item_id=work_item_id,
                work_item_name=name,
                request_id=payload["request_id"],
                requester_id=payload["requester_id"],
            )
        elif event == EVENT_COMPLETION_REVIEWED:
            requester_id = payload.get("requester_id")
            if requester_id is None:
                return
            NotificationService.notify_completion_reviewed(
                requester_id=requester_id,
                kind=kind,
                work_item_id=work_item_id,
                work_item_name=name,
                request_id=payload["request_id"],
                decision=payload["decision"],
                reviewer_id=payload["reviewer_id"],
            )
        else:
            logger.warning("NotificationEventSink ignoring unknown event %s", event)
