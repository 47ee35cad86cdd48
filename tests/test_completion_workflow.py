"""
Tests: Completion review workflow engine.

Exercises CompletionWorkflow directly (no HTTP) with the default role table
and a RecordingEventSink:

    submit → pending request, item status untouched, display "Pending Review"
    approve → item Completed, completed_at set
    reject → item In Progress, completed_at cleared, resubmission allowed
    refusals → typed errors, no state change
    storage failures → ConflictError / PersistenceError, nothing half-written
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from tasktracker.auth import Identity
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
)
from tasktracker.models import db as _db
from tasktracker.models.completion import CompletionRequest, validate_request_transition
from tasktracker.models.work_item import Project, Task
from tasktracker.services import request_ledger, work_item_store
from tasktracker.services.completion_service import CompletionWorkflow, derive_display_status
from tasktracker.services.event_sink import EventSink
from tasktracker.services.role_gate import RoleGate


# ── Helpers ──────────────────────────────────────────────────────────────────


def _make_task(assignee=None, status="In Progress", name="Write report") -> Task:
    t = Task(
        name=name,
        assignee_id=assignee.id if assignee else None,
        status=status,
        completed_at=datetime.now(timezone.utc) if status == "Completed" else None,
    )
    _db.session.add(t)
    _db.session.commit()
    return t


def _make_project(assignee=None, status="In Progress", name="Migration") -> Project:
    p = Project(
        name=name,
        assignee_id=assignee.id if assignee else None,
        status=status,
        completed_at=datetime.now(timezone.utc) if status == "Completed" else None,
    )
    _db.session.add(p)
    _db.session.commit()
    return p


def _identity(user) -> Identity:
    return Identity(id=user.id, role=user.role)


def _requests_for(kind, item_id):
    return CompletionRequest.query.filter_by(work_item_kind=kind, work_item_id=item_id).all()


class _FailingSink(EventSink):
    def emit(self, subject, event, payload):
        raise RuntimeError("socket gone")


# ── Submit ───────────────────────────────────────────────────────────────────


def test_submit_creates_pending_request_without_touching_status(workflow, employee):
    task = _make_task(employee)

    req = workflow.submit_completion(
        "task", task.id, _identity(employee), evidence="  PR #12 merged ", notes="see CI",
    )

    assert req["status"] == "pending"
    assert req["requester_id"] == employee.id
    assert req["requester_name"] == "alice"
    assert req["evidence"] == "PR #12 merged"
    assert req["reviewer_id"] is None and req["reviewed_at"] is None
    item = _db.session.get(Task, task.id)
    assert item.status == "In Progress"
    assert item.completed_at is None
    assert workflow.get_display_status("task", task.id) == "Pending Review"


def test_submit_stores_attachment_handles(workflow, employee):
    task = _make_task(employee)

    req = workflow.submit_completion(
        "task", task.id, _identity(employee), attachments=["a.png", "b.pdf"],
    )

    assert req["attachments"] == ["a.png", "b.pdf"]


def test_submit_rejects_non_string_attachments(workflow, employee):
    task = _make_task(employee)

    with pytest.raises(ValidationError):
        workflow.submit_completion("task", task.id, _identity(employee), attachments=[42])
    assert _requests_for("task", task.id) == []


@pytest.mark.parametrize("attachments", [5, "a.png", {"a": "b.png"}])
def test_submit_rejects_attachments_that_are_not_a_list(workflow, employee, attachments):
    task = _make_task(employee)

    with pytest.raises(ValidationError):
        workflow.submit_completion("task", task.id, _identity(employee), attachments=attachments)
    assert _requests_for("task", task.id) == []


def test_submit_on_unassigned_item_is_allowed(workflow, employee):
    task = _make_task(assignee=None)

    req = workflow.submit_completion("task", task.id, _identity(employee))

    assert req["status"] == "pending"


def test_submit_emits_requested_event(workflow, recorder, employee):
    task = _make_task(employee)

    req = workflow.submit_completion("task", task.id, _identity(employee))

    assert recorder.events == [(
        f"task-{task.id}",
        "completion.requested",
        {
            "work_item_kind": "task",
            "work_item_id": task.id,
            "request_id": req["id"],
            "requester_id": employee.id,
        },
    )]


def test_manager_cannot_submit(workflow, manager, employee):
    task = _make_task(employee)

    with pytest.raises(ForbiddenError):
        workflow.submit_completion("task", task.id, _identity(manager))
    assert _requests_for("task", task.id) == []


def test_admin_cannot_submit_project(workflow, admin):
    project = _make_project()

    with pytest.raises(ForbiddenError) as exc:
        workflow.submit_completion("project", project.id, _identity(admin))
    assert exc.value.details["work_item_kind"] == "project"


def test_forbidden_is_checked_before_existence(workflow, manager):
    with pytest.raises(ForbiddenError):
        workflow.submit_completion("task", 9999, _identity(manager))


def test_submit_missing_item_is_not_found(workflow, employee):
    with pytest.raises(NotFoundError):
        workflow.submit_completion("task", 9999, _identity(employee))


def test_submit_on_someone_elses_item_is_not_found(workflow, employee, other_employee):
    task = _make_task(employee)

    with pytest.raises(NotFoundError):
        workflow.submit_completion("task", task.id, _identity(other_employee))
    assert _requests_for("task", task.id) == []


def test_submit_on_completed_item_fails(workflow, employee):
    task = _make_task(employee, status="Completed")

    with pytest.raises(AlreadyCompletedError):
        workflow.submit_completion("task", task.id, _identity(employee))


def test_second_submission_while_pending_is_duplicate(workflow, recorder, employee):
    task = _make_task(employee)
    first = workflow.submit_completion("task", task.id, _identity(employee), evidence="one")

    with pytest.raises(DuplicateRequestError) as exc:
        workflow.submit_completion("task", task.id, _identity(employee), evidence="two")

    assert exc.value.details["pending_request_id"] == first["id"]
    rows = _requests_for("task", task.id)
    assert len(rows) == 1
    assert rows[0].evidence == "one"
    assert recorder.names() == ["completion.requested"]


def test_submit_unknown_kind_is_validation_error(workflow, employee):
    with pytest.raises(ValidationError):
        workflow.submit_completion("epic", 1, _identity(employee))


# ── Review ───────────────────────────────────────────────────────────────────


def test_manager_approves_task(workflow, recorder, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    reviewed = workflow.review_completion(req["id"], _identity(manager), "approved", feedback="Great")

    assert reviewed["status"] == "approved"
    assert reviewed["reviewer_id"] == manager.id
    assert reviewed["reviewer_name"] == "bob"
    assert reviewed["feedback"] == "Great"
    assert reviewed["reviewed_at"] is not None
    item = _db.session.get(Task, task.id)
    assert item.status == "Completed"
    assert item.completed_at is not None
    assert workflow.get_display_status("task", task.id) == "Completed"

    subject, event, payload = recorder.events[-1]
    assert subject == f"task-{task.id}"
    assert event == "completion.reviewed"
    assert payload == {
        "work_item_kind": "task",
        "work_item_id": task.id,
        "request_id": req["id"],
        "decision": "approved",
        "reviewer_id": manager.id,
        "requester_id": employee.id,
    }


def test_rejection_reopens_and_allows_resubmission(workflow, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    reviewed = workflow.review_completion(req["id"], _identity(manager), "rejected", feedback="Missing tests")

    assert reviewed["status"] == "rejected"
    assert reviewed["feedback"] == "Missing tests"
    item = _db.session.get(Task, task.id)
    assert item.status == "In Progress"
    assert item.completed_at is None
    assert workflow.get_display_status("task", task.id) == "In Progress"

    again = workflow.submit_completion("task", task.id, _identity(employee))
    assert again["status"] == "pending"
    assert again["id"] != req["id"]


def test_rejection_moves_pending_item_to_in_progress(workflow, employee, manager):
    task = _make_task(employee, status="Pending")
    req = workflow.submit_completion("task", task.id, _identity(employee))

    workflow.review_completion(req["id"], _identity(manager), "rejected")

    assert _db.session.get(Task, task.id).status == "In Progress"


def test_decision_is_case_insensitive(workflow, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    reviewed = workflow.review_completion(req["id"], _identity(manager), " Approved ")

    assert reviewed["status"] == "approved"


def test_employee_cannot_review(workflow, recorder, employee):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    with pytest.raises(ForbiddenError):
        workflow.review_completion(req["id"], _identity(employee), "approved")

    assert _db.session.get(CompletionRequest, req["id"]).status == "pending"
    assert _db.session.get(Task, task.id).status == "In Progress"
    assert recorder.names() == ["completion.requested"]


def test_manager_cannot_review_project(workflow, employee, manager):
    project = _make_project(employee)
    req = workflow.submit_completion("project", project.id, _identity(employee))

    with pytest.raises(ForbiddenError) as exc:
        workflow.review_completion(req["id"], _identity(manager), "approved")

    assert exc.value.details["work_item_kind"] == "project"
    assert _db.session.get(Project, project.id).status == "In Progress"


def test_admin_approves_project(workflow, employee, admin):
    project = _make_project(employee)
    req = workflow.submit_completion("project", project.id, _identity(employee))

    reviewed = workflow.review_completion(req["id"], _identity(admin), "approved")

    assert reviewed["status"] == "approved"
    item = _db.session.get(Project, project.id)
    assert item.status == "Completed"
    assert item.completed_at is not None


def test_admin_reviews_tasks_too(workflow, employee, admin):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    reviewed = workflow.review_completion(req["id"], _identity(admin), "rejected")

    assert reviewed["status"] == "rejected"


def test_review_missing_request_is_not_found(workflow, manager):
    with pytest.raises(NotFoundError):
        workflow.review_completion(424242, _identity(manager), "approved")


def test_review_with_expected_kind_mismatch_is_not_found(workflow, employee, admin):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    with pytest.raises(NotFoundError):
        workflow.review_completion(req["id"], _identity(admin), "approved", expected_kind="project")


@pytest.mark.parametrize("decision", ["maybe", "", None, "approve", ["approved"], {"decision": "approved"}, 1])
def test_invalid_decision_changes_nothing(workflow, recorder, employee, manager, decision):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    with pytest.raises(InvalidDecisionError):
        workflow.review_completion(req["id"], _identity(manager), decision)

    assert _db.session.get(CompletionRequest, req["id"]).status == "pending"
    assert _db.session.get(Task, task.id).status == "In Progress"
    assert recorder.names() == ["completion.requested"]


def test_second_review_is_already_reviewed(workflow, employee, manager, admin):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))
    workflow.review_completion(req["id"], _identity(manager), "rejected")

    for reviewer, decision in ((manager, "approved"), (admin, "rejected"), (manager, "rejected")):
        with pytest.raises(AlreadyReviewedError) as exc:
            workflow.review_completion(req["id"], _identity(reviewer), decision)
        assert exc.value.details["status"] == "rejected"

    assert _db.session.get(Task, task.id).status == "In Progress"


# ── Event sink failure ───────────────────────────────────────────────────────


def test_sink_failure_does_not_undo_commit(employee, manager):
    engine = CompletionWorkflow(role_gate=RoleGate(), event_sink=_FailingSink())
    task = _make_task(employee)

    req = engine.submit_completion("task", task.id, _identity(employee))
    reviewed = engine.review_completion(req["id"], _identity(manager), "approved")

    assert reviewed["status"] == "approved"
    assert _db.session.get(Task, task.id).status == "Completed"


# ── Storage failures ─────────────────────────────────────────────────────────


def test_lost_insert_race_becomes_conflict(workflow, monkeypatch, employee):
    task = _make_task(employee)
    existing = request_ledger.append("task", task.id, employee.id)
    _db.session.commit()
    # Simulate a concurrent submitter that passed the duplicate check first.
    monkeypatch.setattr(request_ledger, "find_pending", lambda kind, item_id: None)

    with pytest.raises(ConflictError) as exc:
        workflow.submit_completion("task", task.id, _identity(employee))

    assert exc.value.retryable is True
    rows = _requests_for("task", task.id)
    assert [r.id for r in rows] == [existing.id]


def test_lost_review_race_becomes_conflict(workflow, monkeypatch, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))
    monkeypatch.setattr(request_ledger, "record_decision", lambda *a, **kw: False)

    with pytest.raises(ConflictError):
        workflow.review_completion(req["id"], _identity(manager), "approved")

    assert _db.session.get(Task, task.id).status == "In Progress"


def test_database_error_becomes_persistence_error(workflow, monkeypatch, employee):
    task = _make_task(employee)

    def _boom(kind, item_id):
        raise OperationalError("UPDATE tasks", {}, Exception("disk I/O error"))

    monkeypatch.setattr(work_item_store, "touch", _boom)

    with pytest.raises(PersistenceError):
        workflow.submit_completion("task", task.id, _identity(employee))

    assert _requests_for("task", task.id) == []


def test_review_status_update_failure_rolls_back_request(workflow, monkeypatch, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))

    def _boom(kind, item_id, completed_at=None):
        raise OperationalError("UPDATE tasks", {}, Exception("lock timeout"))

    monkeypatch.setattr(work_item_store, "mark_completed", _boom)

    with pytest.raises(PersistenceError):
        workflow.review_completion(req["id"], _identity(manager), "approved")

    assert _db.session.get(CompletionRequest, req["id"]).status == "pending"
    assert _db.session.get(Task, task.id).status == "In Progress"


# ── Display status ───────────────────────────────────────────────────────────


@pytest.mark.parametrize("status, pending, expected", [
    ("In Progress", False, "In Progress"),
    ("In Progress", True, "Pending Review"),
    ("Pending", True, "Pending Review"),
    ("Pending", False, "Pending"),
    ("Completed", True, "Completed"),
    ("Completed", False, "Completed"),
])
def test_derive_display_status(status, pending, expected):
    assert derive_display_status(status, pending) == expected


def test_display_status_missing_item_is_not_found(workflow):
    with pytest.raises(NotFoundError):
        workflow.get_display_status("project", 31337)


def test_completed_wins_over_stray_pending_request(workflow, employee):
    task = _make_task(employee, status="Completed")
    request_ledger.append("task", task.id, employee.id)
    _db.session.commit()

    assert workflow.get_display_status("task", task.id) == "Completed"


def test_batch_display_statuses(workflow, employee):
    pending = _make_task(employee, name="a")
    idle = _make_task(employee, name="b")
    done = _make_task(employee, status="Completed", name="c")
    workflow.submit_completion("task", pending.id, _identity(employee))

    statuses = workflow.get_display_statuses("task", [pending.id, idle.id, done.id, 999])

    assert statuses == {
        pending.id: "Pending Review",
        idle.id: "In Progress",
        done.id: "Completed",
    }


def test_batch_display_statuses_empty(workflow):
    assert workflow.get_display_statuses("project", []) == {}


# ── Listings ─────────────────────────────────────────────────────────────────


def _two_rounds(workflow, task, employee, reviewer):
    first = workflow.submit_completion("task", task.id, _identity(employee), evidence="first")
    workflow.review_completion(first["id"], _identity(reviewer), "rejected")
    second = workflow.submit_completion("task", task.id, _identity(employee), evidence="second")
    return first, second


def test_reviewer_sees_all_requests_newest_first(workflow, employee, manager):
    task = _make_task(employee)
    first, second = _two_rounds(workflow, task, employee, manager)

    items = workflow.list_completion_requests("task", task.id, _identity(manager))

    assert [i["id"] for i in items] == [second["id"], first["id"]]
    assert items[1]["reviewer_name"] == "bob"


def test_contributor_sees_only_own_requests(workflow, employee, other_employee, manager):
    task = _make_task(assignee=None)
    mine = workflow.submit_completion("task", task.id, _identity(employee))
    workflow.review_completion(mine["id"], _identity(manager), "rejected")
    theirs = workflow.submit_completion("task", task.id, _identity(other_employee))

    own = workflow.list_completion_requests("task", task.id, _identity(employee))
    other = workflow.list_completion_requests("task", task.id, _identity(other_employee))

    assert [i["id"] for i in own] == [mine["id"]]
    assert [i["id"] for i in other] == [theirs["id"]]


def test_manager_cannot_list_project_requests(workflow, employee, manager):
    project = _make_project(employee)

    with pytest.raises(ForbiddenError):
        workflow.list_completion_requests("project", project.id, _identity(manager))


def test_list_requests_for_missing_item(workflow, manager):
    with pytest.raises(NotFoundError):
        workflow.list_completion_requests("task", 5150, _identity(manager))


def test_pending_reviews_scoped_by_role(workflow, employee, manager, admin):
    task = _make_task(employee, name="Write docs")
    project = _make_project(employee, name="Rollout")
    task_req = workflow.submit_completion("task", task.id, _identity(employee))
    project_req = workflow.submit_completion("project", project.id, _identity(employee))

    for_manager = workflow.list_pending_reviews(_identity(manager))
    for_admin = workflow.list_pending_reviews(_identity(admin))

    assert [i["id"] for i in for_manager] == [task_req["id"]]
    assert for_manager[0]["work_item_name"] == "Write docs"
    assert {i["id"] for i in for_admin} == {task_req["id"], project_req["id"]}
    assert [i["id"] for i in for_admin] == [project_req["id"], task_req["id"]]


def test_pending_reviews_exclude_decided(workflow, employee, manager):
    task = _make_task(employee)
    req = workflow.submit_completion("task", task.id, _identity(employee))
    workflow.review_completion(req["id"], _identity(manager), "approved")

    assert workflow.list_pending_reviews(_identity(manager)) == []


def test_pending_reviews_kind_filter(workflow, employee, admin):
    task = _make_task(employee)
    project = _make_project(employee)
    workflow.submit_completion("task", task.id, _identity(employee))
    project_req = workflow.submit_completion("project", project.id, _identity(employee))

    items = workflow.list_pending_reviews(_identity(admin), kind="project")

    assert [i["id"] for i in items] == [project_req["id"]]


def test_pending_reviews_forbidden_for_employee(workflow, employee):
    with pytest.raises(ForbiddenError):
        workflow.list_pending_reviews(_identity(employee))


def test_pending_reviews_forbidden_for_unreviewed_kind(workflow, manager):
    with pytest.raises(ForbiddenError):
        workflow.list_pending_reviews(_identity(manager), kind="project")


@pytest.mark.parametrize("old, new, allowed", [
    ("pending", "approved", True),
    ("pending", "rejected", True),
    ("approved", "rejected", False),
    ("rejected", "approved", False),
    ("approved", "approved", False),
])
def test_request_transitions(old, new, allowed):
    assert validate_request_transition(old, new) is allowed
