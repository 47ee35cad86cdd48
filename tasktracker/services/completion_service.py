"""
Completion Workflow Engine.

Drives the review lifecycle shared by Tasks and Projects: an employee claims
a work item is finished, a reviewer approves or rejects the claim, and the
work item's authoritative status follows the decision.

Design decisions:
    - One engine for every work-item kind.  Kind-specific behaviour (who
      may submit, who may review) lives in the injected ``RoleGate``.
    - Submitting never touches ``WorkItem.status``.  While a request is
      pending the item keeps its active status and only the *display*
      status reads "Pending Review" (see ``derive_display_status``).
    - At most one pending request per work item.  Checked under a row lock
      on the work item and backed by a partial unique index, so a lost race
      surfaces as ``ConflictError`` rather than a second pending row.
    - A review is one transaction: the ledger compare-and-set and the work
      item status change commit together or not at all.
    - Events go to the injected ``EventSink`` after commit.  A sink failure
      is logged; it cannot undo a committed transition.
    - Storage errors never escape raw: lost races become ``ConflictError``,
      anything else ``PersistenceError``.

Usage:
    from tasktracker.services.completion_service import get_workflow

    workflow = get_workflow()
    req = workflow.submit_completion("task", 7, identity, evidence="PR merged")
    workflow.review_completion(req["id"], reviewer, "approved", feedback="Nice")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tasktracker.core.exceptions import (
    AlreadyCompletedError,
    AlreadyReviewedError,
    ConflictError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidDecisionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
    WorkflowError,
)
from tasktracker.models import db
from tasktracker.models.completion import REQUEST_APPROVED, REVIEW_DECISIONS, validate_request_transition
from tasktracker.models.notification import EVENT_COMPLETION_REQUESTED, EVENT_COMPLETION_REVIEWED
from tasktracker.models.work_item import DISPLAY_PENDING_REVIEW, STATUS_COMPLETED
from tasktracker.services import request_ledger, work_item_store
from tasktracker.services.event_sink import (
    CompositeEventSink,
    EventSink,
    LoggingEventSink,
    NotificationEventSink,
    NullEventSink,
    subject_for,
)
from tasktracker.services.role_gate import ACTION_REVIEW, ACTION_SUBMIT, RoleGate

logger = logging.getLogger(__name__)

ACTION_LIST_REQUESTS = "list_completion_requests"
ACTION_LIST_PENDING = "list_pending_reviews"

EXTENSION_KEY = "completion_workflow"


# ── Pure helpers ───────────────────────────────────────────────────────────────


def derive_display_status(status: str, has_pending_request: bool) -> str:
    """Combine the persisted status with the ledger state.

    A pending request shows as "Pending Review" unless the item is already
    Completed, in which case Completed always wins.
    """
    if has_pending_request and status != STATUS_COMPLETED:
        return DISPLAY_PENDING_REVIEW
    return status


def normalize_decision(decision) -> str:
    """Return 'approved' / 'rejected' for any casing, else raise InvalidDecisionError."""
    if not isinstance(decision, str):
        raise InvalidDecisionError(decision)
    value = decision.strip().lower()
    if value not in REVIEW_DECISIONS:
        raise InvalidDecisionError(decision)
    return value


def _clean_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_attachments(attachments) -> list[str]:
    if not attachments:
        return []
    if not isinstance(attachments, (list, tuple)) or not all(isinstance(a, str) and a for a in attachments):
        raise ValidationError(
            "attachments must be a list of non-empty handle strings",
            details={"attachments": "expected list of strings"},
        )
    return list(attachments)


def _log_extra(kind, work_item_id, request_id=None, identity=None) -> dict:
    return {
        "work_item_kind": kind,
        "work_item_id": work_item_id,
        "completion_request_id": request_id,
        "user_id": identity.id if identity else None,
    }


# ── Engine ─────────────────────────────────────────────────────────────────────


class CompletionWorkflow:
    """Completion review state machine for every work-item kind."""

    def __init__(self, role_gate: RoleGate | None = None, event_sink: EventSink | None = None):
        self.role_gate = role_gate or RoleGate()
        self.event_sink = event_sink or NullEventSink()

    # ── Internal helpers ───────────────────────────────────────────────────

    @contextmanager
    def _unit_of_work(self, operation: str, *, commit: bool = True):
        """Run a block as one transaction and translate storage failures.

        commit=True:  commit on success, roll back on any error.
        commit=False: read-only; roll back only on storage errors.
        """
        try:
            yield
            if commit:
                db.session.commit()
        except WorkflowError:
            if commit:
                db.session.rollback()
            raise
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning("Integrity conflict during %s: %s", operation, exc.orig)
            raise ConflictError("CompletionRequest", f"{operation} lost a concurrent update") from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Database error during %s", operation)
            raise PersistenceError(operation) from exc

    def _authorize(self, action: str, identity, kind: str) -> None:
        role = getattr(identity, "role", None)
        if not self.role_gate.can_perform(action, role, kind):
            raise ForbiddenError(action=action, role=role, kind=kind)

    def _emit(self, kind: str, work_item_id: int, event: str, payload: dict) -> None:
        subject = subject_for(kind, work_item_id)
        try:
            self.event_sink.emit(subject, event, payload)
        except Exception:
            logger.exception(
                "Event sink failed for %s on %s", event, subject,
                extra={"event": event, **_log_extra(kind, work_item_id, payload.get("request_id"))},
            )

    # ── Commands ───────────────────────────────────────────────────────────

    def submit_completion(
        self,
        kind: str,
        work_item_id: int,
        identity,
        evidence: str | None = None,
        notes: str | None = None,
        attachments: list[str] | None = None,
    ) -> dict:
        """Create a pending completion request for a work item.

        Checks, in order:
            role may submit for ``kind``      else ForbiddenError
            item exists and is the caller's   else NotFoundError
            item is not Completed             else AlreadyCompletedError
            no pending request for the item   else DuplicateRequestError

        The work item's status is left as it is; only ``updated_at`` moves.

        Returns:
            Serialised CompletionRequest (status 'pending').
        """
        work_item_store.resolve_model(kind)

        try:
            self._authorize(ACTION_SUBMIT, identity, kind)
            handles = _clean_attachments(attachments)
            with self._unit_of_work("submit_completion"):
                item = work_item_store.get_work_item(kind, work_item_id, for_update=True)
                if item is None or (item.assignee_id is not None and item.assignee_id != identity.id):
                    raise NotFoundError(resource=kind.capitalize(), resource_id=work_item_id)
                if item.is_completed:
                    raise AlreadyCompletedError(kind, work_item_id)

                pending = request_ledger.find_pending(kind, work_item_id)
                if pending is not None:
                    raise DuplicateRequestError(kind, work_item_id, pending.id)

                record = request_ledger.append(
                    kind,
                    work_item_id,
                    requester_id=identity.id,
                    evidence=_clean_text(evidence),
                    notes=_clean_text(notes),
                    attachments=handles,
                )
                work_item_store.touch(kind, work_item_id)
                request_id = record.id
        except WorkflowError as exc:
            logger.warning(
                "Completion request refused: %s", exc,
                extra=_log_extra(kind, work_item_id, identity=identity),
            )
            raise

        logger.info(
            "Completion requested",
            extra=_log_extra(kind, work_item_id, request_id, identity),
        )
        self._emit(kind, work_item_id, EVENT_COMPLETION_REQUESTED, {
            "work_item_kind": kind,
            "work_item_id": work_item_id,
            "request_id": request_id,
            "requester_id": identity.id,
        })
        return request_ledger.get_request(request_id).to_dict()

    def review_completion(
        self,
        request_id: int,
        identity,
        decision,
        feedback: str | None = None,
        expected_kind: str | None = None,
    ) -> dict:
        """Approve or reject a pending completion request.

        ``expected_kind`` lets a kind-scoped caller (e.g. a /tasks/ route)
        treat a request for another kind as not found.

        Checks, in order:
            role reviews at least one kind   else ForbiddenError
            request exists                   else NotFoundError
            role reviews the request's kind  else ForbiddenError
            decision is approved/rejected    else InvalidDecisionError
            request is still pending         else AlreadyReviewedError

        Effects (one transaction):
            request  → decision, reviewer_id, feedback, reviewed_at
            approved → work item Completed, completed_at = now
            rejected → work item In Progress, completed_at = NULL

        Returns:
            Serialised CompletionRequest after the decision.
        """
        role = getattr(identity, "role", None)
        kind = work_item_id = None

        try:
            if not self.role_gate.reviewer_kinds(role):
                raise ForbiddenError(action=ACTION_REVIEW, role=role)

            with self._unit_of_work("review_completion"):
                record = request_ledger.get_request(request_id)
                if record is None or (expected_kind and record.work_item_kind != expected_kind):
                    raise NotFoundError(resource="CompletionRequest", resource_id=request_id)
                kind, work_item_id = record.work_item_kind, record.work_item_id
                self._authorize(ACTION_REVIEW, identity, kind)

                value = normalize_decision(decision)
                if not validate_request_transition(record.status, value):
                    raise AlreadyReviewedError(request_id, record.status)

                now = datetime.now(timezone.utc)
                if not request_ledger.record_decision(
                    request_id, value, identity.id, _clean_text(feedback), reviewed_at=now,
                ):
                    raise ConflictError("CompletionRequest", "request was decided by a concurrent review")

                if value == REQUEST_APPROVED:
                    changed = work_item_store.mark_completed(kind, work_item_id, completed_at=now)
                else:
                    changed = work_item_store.reopen(kind, work_item_id)
                if not changed and work_item_store.get_work_item(kind, work_item_id) is None:
                    raise NotFoundError(resource=kind.capitalize(), resource_id=work_item_id)
                requester_id = record.requester_id
        except WorkflowError as exc:
            logger.warning(
                "Completion review refused: %s", exc,
                extra=_log_extra(kind, work_item_id, request_id, identity),
            )
            raise

        logger.info(
            "Completion request %s", value,
            extra=_log_extra(kind, work_item_id, request_id, identity),
        )
        self._emit(kind, work_item_id, EVENT_COMPLETION_REVIEWED, {
            "work_item_kind": kind,
            "work_item_id": work_item_id,
            "request_id": request_id,
            "decision": value,
            "reviewer_id": identity.id,
            "requester_id": requester_id,
        })
        return request_ledger.get_request(request_id).to_dict()

    # ── Queries ────────────────────────────────────────────────────────────

    def get_display_status(self, kind: str, work_item_id: int) -> str:
        """Fresh display status for one work item."""
        work_item_store.resolve_model(kind)
        with self._unit_of_work("get_display_status", commit=False):
            item = work_item_store.get_work_item(kind, work_item_id)
            if item is None:
                raise NotFoundError(resource=kind.capitalize(), resource_id=work_item_id)
            return derive_display_status(item.status, request_ledger.has_pending(kind, work_item_id))

    def get_display_statuses(self, kind: str, work_item_ids) -> dict[int, str]:
        """Display status for several items of one kind.

        Reads the items and their pending requests once, then derives each
        item's status from that snapshot.  Unknown ids are left out.
        """
        work_item_store.resolve_model(kind)
        with self._unit_of_work("get_display_statuses", commit=False):
            items = work_item_store.get_work_items(kind, work_item_ids)
            pending = request_ledger.pending_ids_for(kind, [item.id for item in items])
            return {item.id: derive_display_status(item.status, item.id in pending) for item in items}

    def list_completion_requests(self, kind: str, work_item_id: int, identity) -> list[dict]:
        """Requests for one work item, newest first.

        Reviewers of ``kind`` see every request; contributors see only their
        own; any other role is refused.
        """
        work_item_store.resolve_model(kind)
        role = getattr(identity, "role", None)
        with self._unit_of_work("list_completion_requests", commit=False):
            if work_item_store.get_work_item(kind, work_item_id) is None:
                raise NotFoundError(resource=kind.capitalize(), resource_id=work_item_id)

            if self.role_gate.is_reviewer(role, kind):
                records = request_ledger.list_for_item(kind, work_item_id)
            elif self.role_gate.is_contributor(role, kind):
                records = request_ledger.list_for_item(kind, work_item_id, requester_id=identity.id)
            else:
                raise ForbiddenError(action=ACTION_LIST_REQUESTS, role=role, kind=kind)
            return [r.to_dict() for r in records]

    def list_pending_reviews(self, identity, kind: str | None = None) -> list[dict]:
        """Pending requests across every kind the caller reviews, newest first.

        Args:
            kind: Optional narrowing to one kind; must be a kind the caller reviews.
        """
        role = getattr(identity, "role", None)
        kinds = self.role_gate.reviewer_kinds(role)
        if kind is not None:
            work_item_store.resolve_model(kind)
            kinds = [k for k in kinds if k == kind]
        if not kinds:
            raise ForbiddenError(action=ACTION_LIST_PENDING, role=role, kind=kind)

        with self._unit_of_work("list_pending_reviews", commit=False):
            rows = request_ledger.list_pending(kinds)
            result = []
            for record, work_item_name in rows:
                d = record.to_dict()
                d["work_item_name"] = work_item_name
                result.append(d)
            return result


# ── Application accessor ───────────────────────────────────────────────────────


def init_completion_workflow(app, event_sink: EventSink | None = None) -> CompletionWorkflow:
    """Build the engine from app config and register it on the app.

    Without an explicit sink, events are logged and turned into in-app
    notifications for the reviewers / requester.
    """
    role_gate = RoleGate.from_config(app.config.get("COMPLETION_ROLE_TABLE"))
    if event_sink is None:
        event_sink = CompositeEventSink([LoggingEventSink(), NotificationEventSink(role_gate)])
    workflow = CompletionWorkflow(role_gate=role_gate, event_sink=event_sink)
    app.extensions[EXTENSION_KEY] = workflow
    return workflow


def get_workflow() -> CompletionWorkflow:
    """Return the engine registered on the current app."""
    return current_app.extensions[EXTENSION_KEY]
