"""
Task Tracker
User model.

Users are created and authenticated elsewhere; this table exists so the
completion workflow can resolve display names and notification recipients.
"""

from datetime import datetime, timezone

from tasktracker.models import db

# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_EMPLOYEE = "employee"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

ROLES = frozenset({ROLE_EMPLOYEE, ROLE_MANAGER, ROLE_ADMIN})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), nullable=False, unique=True)
    email = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_EMPLOYEE)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "role IN ('employee','manager','admin')",
            name="ck_users_role",
        ),
        db.Index("ix_users_role_active", "role", "is_active"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username} ({self.role})>"
