"""
Completion Workflow — Request Ledger.

Query and write helpers for ``CompletionRequest`` rows.  Rows are appended
once and transitioned once (pending → approved | rejected) through
``record_decision``, a compare-and-set UPDATE guarded by ``status='pending'``.

Ordering convention: every listing is newest first (created_at DESC, id DESC
as a tie-breaker for rows created within the same clock tick).

Nothing here commits; the engine owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update

from tasktracker.models import db
from tasktracker.models.completion import REQUEST_PENDING, CompletionRequest
from tasktracker.services.work_item_store import resolve_model

logger = logging.getLogger(__name__)


def _newest_first(stmt):
    return stmt.order_by(CompletionRequest.created_at.desc(), CompletionRequest.id.desc())


def append(
    kind: str,
    work_item_id: int,
    requester_id: int,
    evidence: str | None = None,
    notes: str | None = None,
    attachments: list[str] | None = None,
) -> CompletionRequest:
    """Insert a new pending request and flush so its id is available.

    The flush is where the one-pending-per-item index fires; callers handle
    the resulting IntegrityError.
    """
    record = CompletionRequest(
        work_item_kind=kind,
        work_item_id=work_item_id,
        requester_id=requester_id,
        evidence=evidence,
        notes=notes,
        attachments=list(attachments or []),
        status=REQUEST_PENDING,
    )
    db.session.add(record)
    db.session.flush()
    return record


def get_request(request_id: int) -> CompletionRequest | None:
    return db.session.get(CompletionRequest, request_id)


def find_pending(kind: str, work_item_id: int) -> CompletionRequest | None:
    """Return the pending request for a work item, if any."""
    return db.session.execute(
        select(CompletionRequest)
        .where(
            CompletionRequest.work_item_kind == kind,
            CompletionRequest.work_item_id == work_item_id,
            CompletionRequest.status == REQUEST_PENDING,
        )
        .limit(1)
    ).scalar_one_or_none()


def has_pending(kind: str, work_item_id: int) -> bool:
    count = db.session.execute(
        select(func.count(CompletionRequest.id)).where(
            CompletionRequest.work_item_kind == kind,
            CompletionRequest.work_item_id == work_item_id,
            CompletionRequest.status == REQUEST_PENDING,
        )
    ).scalar_one()
    return count > 0


def pending_ids_for(kind: str, work_item_ids) -> set[int]:
    """Return the subset of ``work_item_ids`` that have a pending request."""
    ids = list(work_item_ids)
    if not ids:
        return set()
    rows = db.session.execute(
        select(CompletionRequest.work_item_id)
        .where(
            CompletionRequest.work_item_kind == kind,
            CompletionRequest.work_item_id.in_(ids),
            CompletionRequest.status == REQUEST_PENDING,
        )
        .distinct()
    ).scalars().all()
    return set(rows)


def list_for_item(kind: str, work_item_id: int, requester_id: int | None = None) -> list[CompletionRequest]:
    """All requests for one work item, optionally only those by one requester."""
    stmt = select(CompletionRequest).where(
        CompletionRequest.work_item_kind == kind,
        CompletionRequest.work_item_id == work_item_id,
    )
    if requester_id is not None:
        stmt = stmt.where(CompletionRequest.requester_id == requester_id)
    return db.session.execute(_newest_first(stmt)).scalars().all()


def list_pending(kinds) -> list[tuple[CompletionRequest, str]]:
    """Pending requests across all work items of the given kinds.

    Returns:
        (request, work_item_name) pairs, newest first across kinds.
    """
    rows: list[tuple[CompletionRequest, str]] = []
    for kind in kinds:
        model = resolve_model(kind)
        stmt = (
            select(CompletionRequest, model.name)
            .join(model, model.id == CompletionRequest.work_item_id)
            .where(
                CompletionRequest.work_item_kind == kind,
                CompletionRequest.status == REQUEST_PENDING,
            )
        )
        rows.extend((req, name) for req, name in db.session.execute(_newest_first(stmt)).all())
    rows.sort(key=lambda pair: (pair[0].created_at, pair[0].id), reverse=True)
    return rows


def record_decision(
    request_id: int,
    decision: str,
    reviewer_id: int,
    feedback: str | None = None,
    reviewed_at: datetime | None = None,
) -> bool:
    """Move a pending request to ``decision``.

    Returns:
        True if the row was pending and is now decided; False if another
        transaction decided it first (or it no longer exists).
    """
    now = reviewed_at or datetime.now(timezone.utc)
    result = db.session.execute(
        update(CompletionRequest)
        .where(
            CompletionRequest.id == request_id,
            CompletionRequest.status == REQUEST_PENDING,
        )
        .values(
            status=decision,
            reviewer_id=reviewer_id,
            feedback=feedback,
            reviewed_at=now,
            updated_at=now,
        )
    )
    return result.rowcount == 1
