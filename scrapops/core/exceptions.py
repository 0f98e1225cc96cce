"""
Platform-wide exception hierarchy.

Every service in scrapops raises these types so callers (a transport layer,
a CLI, a scheduled job) can map them to responses in one place:

    NotFoundError    unknown transaction or configuration id
    ValidationError  protected evidence field, invalid level, bad input
    ConflictError    duplicate active configuration, lost optimistic race
    StateError       transaction locked or in a terminal status

Progression checks in the workflow engine do NOT raise these; they return a
ValidationResult carrying every reason at once.

Usage:
    from scrapops.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Transaction", resource_id=txn_id)
    raise ValidationError("Invalid operational level", details={"level": 9})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and cross-tenant lookups, so a
    caller cannot tell whether an id exists in another tenant.

    Args:
        resource: Human-readable model/entity name (e.g. "Transaction").
        resource_id: The PK that was looked up.
        tenant_id: Optional. The scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a write would duplicate an active row or lost a race.

    Args:
        resource: Model name.
        field: The unique field (or version column) that conflicted.
        value: The conflicting value.
        message: Optional full message; defaults to "<resource> with <field>=<value> already exists".
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


class StateError(Exception):
    """Raised when an entity's lifecycle state forbids the requested write.

    Args:
        resource: Model name.
        resource_id: PK of the entity.
        state: The blocking state (e.g. "locked", "COMPLETED").
        message: Optional override of the default message.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        state: str,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.state = state
        msg = message or f"{resource} id={resource_id} is {state}"
        super().__init__(msg)
