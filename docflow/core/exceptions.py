"""
Service-wide exception hierarchy.

Services raise these for missing records, business-rule violations outside
the workflow result taxonomy, and state conflicts.  Blueprints register
handlers against these types once and get consistent HTTP status codes.

Usage:
    from docflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Circuit", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model name (e.g. "Circuit", "ApprovalRequest").
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
    """Raised when well-formed input violates a business rule.

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

    Covers both unique-value duplicates and state conflicts such as editing a
    status that active documents still reference.  Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field (or state aspect) in conflict.
        value: The conflicting value.
        message: Optional override for the default message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value: str | None = None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = message or f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
