"""
Engine-wide exception hierarchy.

Services raise these types and nothing else for business-rule failures, so
callers (import orchestrator, seed scripts, an eventual API layer) can map
them in one place.

Usage:
    from roctrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Component", resource_id=42)
    raise ValidationError("Weights sum to 95", details={"total": 95})

Row-level policy during imports:
    ValidationError, FormatError, ReconciliationConflict, ConflictError and
    PersistenceError raised while handling a single row are attached to that
    row's outcome.  They abort the whole batch only when the import runs with
    ``rollback_on_error``.
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Args:
        resource: Human-readable model/entity name (e.g. "Component", "Project").
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
    """Raised when input is well-formed but violates a business rule.

    Template weight sums, duplicate milestone orders, missing required import
    fields and out-of-range milestone values all land here.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate something that must be unique.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class FormatError(Exception):
    """Raised when a label cannot be parsed into its canonical form.

    Covers drawing labels and component IDs under strict validation.
    """

    def __init__(self, message: str, value: str | None = None) -> None:
        self.message = message
        self.value = value
        super().__init__(message)


class ReconciliationConflict(Exception):
    """Raised when two import rows explicitly claim the same instance slot."""

    def __init__(self, component_id: str, drawing: str, instance_number: int) -> None:
        self.component_id = component_id
        self.drawing = drawing
        self.instance_number = instance_number
        super().__init__(
            f"Instance {instance_number} of {component_id!r} on drawing "
            f"{drawing!r} is claimed by more than one row"
        )


class PersistenceError(Exception):
    """Raised when the storage layer fails underneath a service operation."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ImportCancelled(Exception):
    """Raised inside the import orchestrator when the cancel callback fires."""
