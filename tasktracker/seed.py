"""
Demo data for local development (``flask seed-demo``).

Creates one user per role, a project and two tasks assigned to the
employee, then logs an access token for each user so the API can be tried
with curl straight away.  Safe to run twice: existing users are reused.
"""

import logging

from tasktracker.models import db
from tasktracker.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER, User
from tasktracker.models.work_item import Project, Task
from tasktracker.services.jwt_service import generate_access_token

logger = logging.getLogger(__name__)

DEMO_USERS = (
    ("alice", ROLE_EMPLOYEE),
    ("bob", ROLE_MANAGER),
    ("carol", ROLE_ADMIN),
)


def _get_or_create_user(username, role):
    user = User.query.filter_by(username=username).first()
    if user is None:
        user = User(username=username, email=f"{username}@example.test", role=role)
        db.session.add(user)
        db.session.flush()
    return user


def seed_demo():
    """Insert demo rows and return {username: token}."""
    users = {name: _get_or_create_user(name, role) for name, role in DEMO_USERS}
    employee, manager = users["alice"], users["bob"]

    if not Project.query.filter_by(name="Website relaunch").first():
        project = Project(
            name="Website relaunch",
            description="Replace the marketing site",
            owner_id=manager.id,
            assignee_id=employee.id,
        )
        db.session.add(project)
        db.session.flush()
        db.session.add_all([
            Task(name="Draft copy", project_id=project.id, assignee_id=employee.id, priority="high"),
            Task(name="Export assets", project_id=project.id, assignee_id=employee.id),
        ])
    db.session.commit()

    tokens = {}
    for name, user in users.items():
        tokens[name] = generate_access_token(user.id, user.role, expires_in=24 * 3600)
        logger.info("Seeded %s (%s) token=%s", name, user.role, tokens[name])
    return tokens
