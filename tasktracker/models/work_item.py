"""
Task Tracker
Work-item domain models — Task and Project.

Both kinds share the columns the completion workflow reads and writes
(``status``, ``completed_at``, ``assignee_id``) through the abstract
``WorkItemModel`` base, so one engine can drive either kind.

Status rules:
    - ``status`` holds only the authoritative values below. "Pending Review"
      is a derived display value and is never written to this column.
    - ``completed_at`` is set iff ``status == "Completed"`` (CHECK constraint).
"""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr

from tasktracker.models import db

# ── Constants ────────────────────────────────────────────────────────────────

KIND_TASK = "task"
KIND_PROJECT = "project"
WORK_ITEM_KINDS = frozenset({KIND_TASK, KIND_PROJECT})

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"

DISPLAY_PENDING_REVIEW = "Pending Review"


def _completed_at_check(table_name):
    return db.CheckConstraint(
        "(status = 'Completed' AND completed_at IS NOT NULL) OR "
        "(status <> 'Completed' AND completed_at IS NULL)",
        name=f"ck_{table_name}_completed_at",
    )


def _status_check(table_name):
    return db.CheckConstraint(
        "status IN ('Pending','In Progress','Completed')",
        name=f"ck_{table_name}_status",
    )


class WorkItemModel(db.Model):
    """Abstract base for anything that goes through completion review."""

    __abstract__ = True

    kind = None  # set by subclasses; not a column

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    @declared_attr
    def assignee_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
            comment="Only this user may request completion when set",
        )

    status = db.Column(db.String(20), nullable=False, default=STATUS_IN_PROGRESS)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_completed(self):
        return self.status == STATUS_COMPLETED

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "name": self.name,
            "description": self.description,
            "assignee_id": self.assignee_id,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: {self.name[:40]} [{self.status}]>"


class Project(WorkItemModel):
    """A body of work reviewed by admins."""

    __tablename__ = "projects"

    kind = KIND_PROJECT

    owner_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Manager who created the project",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    tasks = db.relationship("Task", back_populates="project", lazy="dynamic")

    __table_args__ = (
        _status_check("projects"),
        _completed_at_check("projects"),
    )

    def to_dict(self):
        d = super().to_dict()
        d.update({
            "owner_id": self.owner_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        })
        return d


class Task(WorkItemModel):
    """A unit of work assigned to one employee and reviewed by managers."""

    __tablename__ = "tasks"

    kind = KIND_TASK

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    priority = db.Column(db.String(20), nullable=True, default="medium")
    due_date = db.Column(db.Date, nullable=True)

    project = db.relationship("Project", back_populates="tasks")

    __table_args__ = (
        _status_check("tasks"),
        _completed_at_check("tasks"),
    )

    def to_dict(self):
        d = super().to_dict()
        d.update({
            "project_id": self.project_id,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
        })
        return d


# kind -> model class
WORK_ITEM_MODELS = {
    KIND_TASK: Task,
    KIND_PROJECT: Project,
}


def model_for_kind(kind):
    """Return the model class for a work-item kind, or None if unknown."""
    return WORK_ITEM_MODELS.get(kind)
