"""
Completion Workflow — Role Gate.

Table-driven answer to "may this role perform this workflow action on this
kind of work item?".  The engine never compares role names itself; it asks
the gate it was constructed with.

Default table:

    kind      submit_completion   review_completion
    -------   -----------------   -----------------
    task      employee            manager, admin
    project   employee            admin

Managers review tasks only; admins review both kinds.  The same rule
applies to reviews, reviewer listings and the pending-review queue.

Usage:
    from tasktracker.services.role_gate import RoleGate, ACTION_REVIEW

    gate = RoleGate()                       # default table
    gate.can_perform(ACTION_REVIEW, "manager", "project")   # False

    gate = RoleGate.from_config({"task": {"review_completion": ["lead"]}})
"""

from tasktracker.models.auth import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_MANAGER
from tasktracker.models.work_item import KIND_PROJECT, KIND_TASK

ACTION_SUBMIT = "submit_completion"
ACTION_REVIEW = "review_completion"
ACTIONS = frozenset({ACTION_SUBMIT, ACTION_REVIEW})

# kind -> action -> roles
DEFAULT_ROLE_TABLE = {
    KIND_TASK: {
        ACTION_SUBMIT: frozenset({ROLE_EMPLOYEE}),
        ACTION_REVIEW: frozenset({ROLE_MANAGER, ROLE_ADMIN}),
    },
    KIND_PROJECT: {
        ACTION_SUBMIT: frozenset({ROLE_EMPLOYEE}),
        ACTION_REVIEW: frozenset({ROLE_ADMIN}),
    },
}


def can_perform(action: str, role: str | None, kind: str, table: dict | None = None) -> bool:
    """Return True if ``role`` may perform ``action`` on work items of ``kind``.

    Unknown actions, kinds and roles are all denied.
    """
    table = DEFAULT_ROLE_TABLE if table is None else table
    if not role:
        return False
    return role in table.get(kind, {}).get(action, ())


class RoleGate:
    """Immutable role table plus the predicates the engine needs."""

    def __init__(self, table: dict | None = None):
        source = DEFAULT_ROLE_TABLE if table is None else table
        self._table = {
            kind: {action: frozenset(roles) for action, roles in actions.items()}
            for kind, actions in source.items()
        }

    @classmethod
    def from_config(cls, overrides: dict | None):
        """Build a gate from the default table with per-kind overrides merged in.

        ``overrides`` has the same shape as ``DEFAULT_ROLE_TABLE``; any
        (kind, action) pair it names replaces the default role set.
        """
        merged = {kind: dict(actions) for kind, actions in DEFAULT_ROLE_TABLE.items()}
        for kind, actions in (overrides or {}).items():
            for action, roles in actions.items():
                if action not in ACTIONS:
                    raise ValueError(f"Unknown workflow action '{action}' in role table")
                merged.setdefault(kind, {})[action] = frozenset(roles)
        return cls(merged)

    @property
    def kinds(self) -> frozenset:
        return frozenset(self._table)

    def can_perform(self, action: str, role: str | None, kind: str) -> bool:
        return can_perform(action, role, kind, self._table)

    def is_reviewer(self, role: str | None, kind: str) -> bool:
        return self.can_perform(ACTION_REVIEW, role, kind)

    def is_contributor(self, role: str | None, kind: str) -> bool:
        return self.can_perform(ACTION_SUBMIT, role, kind)

    def reviewer_kinds(self, role: str | None) -> list[str]:
        """Kinds the role reviews, sorted for stable output."""
        return sorted(kind for kind in self._table if self.is_reviewer(role, kind))

    def reviewer_roles(self, kind: str) -> frozenset:
        return self._table.get(kind, {}).get(ACTION_REVIEW, frozenset())

    def as_dict(self) -> dict:
        """Serialisable copy of the table (sorted role lists)."""
        return {
            kind: {action: sorted(roles) for action, roles in actions.items()}
            for kind, actions in self._table.items()
        }
