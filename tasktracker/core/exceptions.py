"""
Completion-workflow exception hierarchy.

Why this module exists:
  The workflow engine reports every refused action as a typed exception so
  that blueprints can register a single handler and API consumers can branch
  on a machine-readable ``code`` rather than on message wording.

  Each class carries:
    - ``code``         stable machine-readable identifier (ERR_*)
    - ``http_status``  default HTTP status for blueprint handlers
    - ``message``      stable human-readable text, identical for every
                       instance of the class
    - ``details``      structured context (ids, statuses) for the response
                       body and for logs

  ``str(exc)`` includes the context and is meant for logs only.

Usage:
    from tasktracker.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ForbiddenError(action="review_completion", role="employee", kind="task")
"""


class WorkflowError(Exception):
    """Base class for every error the completion workflow reports."""

    code = "ERR_WORKFLOW"
    http_status = 400
    message = "Workflow error"
    retryable = False

    def __init__(self, detail: str | None = None, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(f"{self.message}: {detail}" if detail else self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class NotFoundError(WorkflowError):
    """Raised when a work item or completion request does not exist.

    Also used when a contributor submits against a work item assigned to
    someone else: a 404 does not confirm the item exists, a 403 would.

    Args:
        resource: Human-readable entity name (e.g. "Task", "CompletionRequest").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"
    http_status = 404
    message = "Resource not found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        detail = resource if resource_id is None else f"{resource} id={resource_id}"
        super().__init__(detail, details={"resource": resource, "resource_id": resource_id})


class ForbiddenError(WorkflowError):
    """Raised when the caller's role may not perform the action for this kind."""

    code = "ERR_FORBIDDEN"
    http_status = 403
    message = "Role is not permitted to perform this action"

    def __init__(self, action: str, role: str | None, kind: str | None = None) -> None:
        self.action = action
        self.role = role
        self.kind = kind
        super().__init__(
            f"role={role!r} action={action} kind={kind}",
            details={"action": action, "role": role, "work_item_kind": kind},
        )


class AlreadyCompletedError(WorkflowError):
    """Raised when completion is requested for a work item that is already Completed."""

    code = "ERR_ALREADY_COMPLETED"
    http_status = 409
    message = "Work item is already completed"

    def __init__(self, kind: str, work_item_id: int) -> None:
        self.kind = kind
        self.work_item_id = work_item_id
        super().__init__(
            f"{kind}/{work_item_id}",
            details={"work_item_kind": kind, "work_item_id": work_item_id},
        )


class DuplicateRequestError(WorkflowError):
    """Raised when a pending completion request already exists for the work item."""

    code = "ERR_DUPLICATE_REQUEST"
    http_status = 409
    message = "A pending completion request already exists for this work item"

    def __init__(self, kind: str, work_item_id: int, pending_request_id: int | None = None) -> None:
        self.kind = kind
        self.work_item_id = work_item_id
        self.pending_request_id = pending_request_id
        super().__init__(
            f"{kind}/{work_item_id} pending_request={pending_request_id}",
            details={
                "work_item_kind": kind,
                "work_item_id": work_item_id,
                "pending_request_id": pending_request_id,
            },
        )


class AlreadyReviewedError(WorkflowError):
    """Raised when a review targets a request that has left the pending state."""

    code = "ERR_ALREADY_REVIEWED"
    http_status = 409
    message = "Completion request has already been reviewed"

    def __init__(self, request_id: int, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(
            f"request={request_id} status={status}",
            details={"request_id": request_id, "status": status},
        )


class InvalidDecisionError(WorkflowError):
    """Raised when a review decision is not one of 'approved' / 'rejected'."""

    code = "ERR_INVALID_DECISION"
    http_status = 400
    message = "Decision must be 'approved' or 'rejected'"

    def __init__(self, decision) -> None:
        self.decision = decision
        super().__init__(f"decision={decision!r}", details={"decision": decision})


class ConflictError(WorkflowError):
    """Raised when a concurrent transaction won the race for the same row.

    Retryable in principle, but callers decide: the engine never retries.

    Args:
        resource: Model name.
        reason: What the losing transaction was trying to do.
    """

    code = "ERR_CONFLICT_RETRYABLE"
    http_status = 409
    message = "Concurrent update conflict"
    retryable = True

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"{resource}: {reason}", details={"resource": resource, "reason": reason})


class ValidationError(WorkflowError):
    """Raised when input is well-formed but unusable (unknown kind, too many files).

    Args:
        detail: Human-readable explanation, kept out of the stable message.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"
    http_status = 400
    message = "Invalid input"


class PersistenceError(WorkflowError):
    """Raised when the database fails for a reason other than a lost race."""

    code = "ERR_DATABASE"
    http_status = 500
    message = "Database error"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(operation, details={"operation": operation})
