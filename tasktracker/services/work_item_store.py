"""
Completion Workflow — Work-Item Status Store.

Persistence helpers for the status fields of Tasks and Projects.  The
completion engine is the only caller that changes ``status`` /
``completed_at`` through this module.

Writes are compare-and-set ``UPDATE`` statements: they only touch the row
when it is in the expected state and return whether a row was changed, so
the caller can tell a lost race from success.  None of these functions
commit; transaction ownership stays with the engine.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from tasktracker.core.exceptions import ValidationError
from tasktracker.models import db
from tasktracker.models.work_item import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    WORK_ITEM_KINDS,
    model_for_kind,
)

logger = logging.getLogger(__name__)


def resolve_model(kind: str):
    """Return the model class for ``kind`` or raise ValidationError."""
    model = model_for_kind(kind)
    if model is None:
        raise ValidationError(
            f"Unknown work item kind '{kind}'",
            details={"work_item_kind": kind, "valid_kinds": sorted(WORK_ITEM_KINDS)},
        )
    return model


def get_work_item(kind: str, work_item_id: int, *, for_update: bool = False):
    """Fetch a work item by PK, optionally locking the row until commit.

    ``for_update`` issues SELECT ... FOR UPDATE on PostgreSQL; SQLite ignores
    the clause (its writers are already serialised per database).
    """
    model = resolve_model(kind)
    stmt = select(model).where(model.id == work_item_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.session.execute(stmt).scalar_one_or_none()


def get_work_items(kind: str, work_item_ids) -> list:
    """Fetch several work items of one kind in a single query."""
    model = resolve_model(kind)
    ids = list(work_item_ids)
    if not ids:
        return []
    return db.session.execute(
        select(model).where(model.id.in_(ids)).order_by(model.id)
    ).scalars().all()


def touch(kind: str, work_item_id: int) -> bool:
    """Bump ``updated_at`` without changing status."""
    model = resolve_model(kind)
    result = db.session.execute(
        update(model)
        .where(model.id == work_item_id)
        .values(updated_at=datetime.now(timezone.utc))
    )
    return result.rowcount == 1


def mark_completed(kind: str, work_item_id: int, completed_at: datetime | None = None) -> bool:
    """Set status=Completed and completed_at, unless the item is already Completed.

    Returns:
        True if the row changed, False if it was missing or already Completed.
    """
    model = resolve_model(kind)
    now = completed_at or datetime.now(timezone.utc)
    result = db.session.execute(
        update(model)
        .where(model.id == work_item_id, model.status != STATUS_COMPLETED)
        .values(status=STATUS_COMPLETED, completed_at=now, updated_at=now)
    )
    return result.rowcount == 1


def reopen(kind: str, work_item_id: int) -> bool:
    """Set status=In Progress and clear completed_at.

    Applies from any status so that a rejection always leaves the item in
    an active state with the completed_at invariant intact.
    """
    model = resolve_model(kind)
    result = db.session.execute(
        update(model)
        .where(model.id == work_item_id)
        .values(
            status=STATUS_IN_PROGRESS,
            completed_at=None,
            updated_at=datetime.now(timezone.utc),
        )
    )
    return result.rowcount == 1
