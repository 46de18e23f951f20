"""
Protocol Desk exception hierarchy.

Services raise these; blueprints register handlers against them once and
map each to a consistent HTTP status and error code.

Usage:
    from protocol_desk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Protocol", resource_id="3f2a...")
    raise ValidationError("subject is required", details={"subject": "required"})
"""


class NotFoundError(Exception):
    """Raised when an operation targets a protocol (or attachment) that does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Protocol", "Attachment").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class IdentityRequiredError(Exception):
    """Raised when a mutation is attempted without an acting user identity.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "An acting user identity is required") -> None:
        super().__init__(message)


class PersistenceError(Exception):
    """Raised when the persistence backend rejects a read or a write.

    The in-memory record set is left untouched when this is raised.
    Maps to HTTP 503.

    Args:
        message: What failed.
        backend: Backend kind ("json", "sql", "memory") for logs.
    """

    def __init__(self, message: str, backend: str | None = None) -> None:
        self.backend = backend
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation cannot produce a unique value.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The unique field.
        value: The conflicting value or scope.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
