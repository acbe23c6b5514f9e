"""
Platform-wide exception hierarchy.

Every engine service raises one of these types and never retries or
downgrades a failure into a no-op. The application factory registers one
handler per type, so blueprints stay free of try/except ladders and HTTP
status codes are consistent everywhere.

Usage:
    from stageflow.core.exceptions import NotFoundError, ForbiddenError

    raise NotFoundError(resource="Task", resource_id=42)
    raise ForbiddenError("Only the task owner or a space admin can move this task")
"""


class StageflowError(Exception):
    """Base class for all engine errors surfaced to the calling layer."""

    code = "ERR_INTERNAL"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(StageflowError):
    """Raised when a referenced Task/Group/Space/User does not exist in scope.

    Cross-space lookups (a group id that belongs to another space) raise this
    too, so callers cannot learn whether foreign records exist.

    Args:
        resource: Human-readable entity name (e.g. "Task", "Group").
        resource_id: The PK that was looked up.
        space_id: Optional scope that was enforced. Included in logs only.
    """

    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        space_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.space_id = space_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ForbiddenError(StageflowError):
    """Raised when the actor lacks the capability for the requested mutation."""

    code = "ERR_FORBIDDEN"


class ValidationError(StageflowError):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"


class InvalidStateError(StageflowError):
    """Raised when an operation is not valid for the entity's current state.

    Examples: pausing a completed task, approving a task that is not sitting
    in an approval-gate group, sealing an already-closed stage entry.
    """

    code = "ERR_CONFLICT_STATE"


class DependencyUnsatisfiedError(StageflowError):
    """Raised when a stage move is blocked by the dependency graph.

    Carries the blocking predecessor so the UI can tell the user which
    stage has to be finished first. ``blocking_group_id`` is None when the
    block is an approval gate rather than a predecessor.
    """

    code = "ERR_DEPENDENCY_UNSATISFIED"

    def __init__(
        self,
        reason: str,
        blocking_group_id: int | None = None,
        blocking_group_name: str | None = None,
    ) -> None:
        self.reason = reason
        self.blocking_group_id = blocking_group_id
        self.blocking_group_name = blocking_group_name
        details = {}
        if blocking_group_id is not None:
            details = {
                "blocking_group_id": blocking_group_id,
                "blocking_group_name": blocking_group_name,
            }
        super().__init__(reason, details=details)


class ConfigurationError(StageflowError):
    """Raised for workflow misconfiguration.

    Empty working-days set, inverted working-hours window, a second start
    stage in one space, or a sequential edge that would close a cycle.
    Callers must treat it as fatal for the request and not retry.
    """

    code = "ERR_CONFIGURATION"


class ConflictError(StageflowError):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
