"""
Task Tracker
Completion request ledger — CompletionRequest model.

One row per claim that a work item is finished.  The ledger is append-only
in the sense that rows are never deleted, and each row changes state exactly
once: ``pending`` → ``approved`` or ``pending`` → ``rejected``.

Polymorphic reference pattern:
    work_item_kind + work_item_id together identify the Task or Project the
    request is about, so a single table serves both kinds.

Single-pending guarantee:
    ``uq_completion_requests_one_pending`` is a partial unique index on
    (work_item_kind, work_item_id) restricted to pending rows.  Two concurrent
    submissions for the same item cannot both insert.
"""

from datetime import datetime, timezone

from tasktracker.models import db

# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

REVIEW_DECISIONS = frozenset({REQUEST_APPROVED, REQUEST_REJECTED})

# status -> statuses it may move to
REQUEST_TRANSITIONS = {
    REQUEST_PENDING: [REQUEST_APPROVED, REQUEST_REJECTED],
    REQUEST_APPROVED: [],
    REQUEST_REJECTED: [],
}


def validate_request_transition(old_status, new_status):
    """Return True if CompletionRequest status transition is valid."""
    return new_status in REQUEST_TRANSITIONS.get(old_status, [])


class CompletionRequest(db.Model):
    """
    A contributor's claim that a work item is done, awaiting a reviewer.

    Business rules:
    - At most one pending row per (work_item_kind, work_item_id).
    - reviewer_id / feedback / reviewed_at are NULL until the single review.
    - attachments holds opaque handles from the attachment store, never bytes.
    """

    __tablename__ = "completion_requests"

    id = db.Column(db.Integer, primary_key=True)

    work_item_kind = db.Column(db.String(20), nullable=False, comment="task | project")
    work_item_id = db.Column(db.Integer, nullable=False)

    requester_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    evidence = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    attachments = db.Column(db.JSON, default=list)

    status = db.Column(db.String(20), nullable=False, default=REQUEST_PENDING)

    reviewer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    feedback = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    requester = db.relationship("User", foreign_keys=[requester_id])
    reviewer = db.relationship("User", foreign_keys=[reviewer_id])

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name="ck_completion_requests_status",
        ),
        db.CheckConstraint(
            "work_item_kind IN ('task','project')",
            name="ck_completion_requests_kind",
        ),
        db.Index("ix_completion_requests_item", "work_item_kind", "work_item_id"),
        db.Index("ix_completion_requests_kind_status", "work_item_kind", "status"),
        db.Index(
            "uq_completion_requests_one_pending",
            "work_item_kind",
            "work_item_id",
            unique=True,
            postgresql_where=db.text("status = 'pending'"),
            sqlite_where=db.text("status = 'pending'"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "work_item_kind": self.work_item_kind,
            "work_item_id": self.work_item_id,
            "requester_id": self.requester_id,
            "requester_name": self.requester.username if self.requester else None,
            "evidence": self.evidence,
            "notes": self.notes,
            "attachments": list(self.attachments or []),
            "status": self.status,
            "reviewer_id": self.reviewer_id,
            "reviewer_name": self.reviewer.username if self.reviewer else None,
            "feedback": self.feedback,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<CompletionRequest #{self.id} "
            f"{self.work_item_kind}/{self.work_item_id} {self.status}>"
        )
