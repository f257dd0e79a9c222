"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from production_hub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError("Escalation reason is required", details={"reason": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist (or is archived).

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "ProjectRole").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. a template with a task cycle, an escalation without reason).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a resource.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class InvalidTransitionError(Exception):
    """Raised when a task status change is not an edge of the state machine.

    Maps to HTTP 409.
    """

    def __init__(self, task_id: int, current: str, requested: str) -> None:
        self.task_id = task_id
        self.current_status = current
        self.requested_status = requested
        super().__init__(
            f"Cannot move task {task_id} from '{current}' to '{requested}'"
        )


class LastAssigneeError(Exception):
    """Raised when removing the only crew member assigned to a task.

    Maps to HTTP 409.
    """

    def __init__(self, task_id: int, crew_id: int) -> None:
        self.task_id = task_id
        self.crew_id = crew_id
        super().__init__(
            f"Crew {crew_id} is the last assignee of task {task_id}; "
            "assign someone else first"
        )
