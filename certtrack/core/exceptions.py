"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere. Validation failures are
raised before any mutation, so a raised exception never leaves a partial
write behind.

Usage:
    from certtrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="CertificationProcess", resource_id=42)
    raise InvalidStageError("shipping")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "CertificationProcess").
        resource_id: The key that was looked up.
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

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_VALIDATION_INVALID"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStageError(ValidationError):
    """Referenced stage id is not part of the stage registry."""

    code = "ERR_INVALID_STAGE"

    def __init__(self, stage_id) -> None:
        self.stage_id = stage_id
        super().__init__(f"Unknown stage: {stage_id!r}", details={"stage": str(stage_id)})


class UnparseableDateError(ValidationError):
    """A user-supplied date could not be turned into an absolute instant."""

    code = "ERR_UNPARSEABLE_DATE"

    def __init__(self, value, reason: str | None = None) -> None:
        self.value = value
        msg = f"Cannot parse date {value!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"value": str(value)})


class TransitionError(ValidationError):
    """Raised when a stage transition is not allowed from the current stage."""

    code = "ERR_INVALID_TRANSITION"

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        msg = f"Cannot move from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"from": current, "to": target})
        self.current_status = current
        self.target_status = target
        self.reason = reason


class ConflictError(Exception):
    """Raised on duplicate records or a concurrent write to the same record.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")
