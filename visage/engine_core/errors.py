"""
Error taxonomy for the visage engine.

NotFound is treated as a no-op at the stack and automation boundaries.
ValidationFailure rejects a single changeset field, never a whole layer.
PersistenceFailure is propagated to the caller untouched.
"""

from __future__ import annotations


class VisageError(Exception):
    """Base class for all engine errors."""

    error_code = "INTERNAL_ERROR"


class NotFound(VisageError):
    """An entity or definition could not be resolved."""

    error_code = "NOT_FOUND"

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ValidationFailure(VisageError):
    """A single changeset field holds an unusable value."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class DefinitionValidationError(VisageError):
    """Raised when a definition fails validation on save."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Definition validation failed with {len(errors)} error(s)")


class PersistenceFailure(VisageError):
    """A durable read or write failed."""

    error_code = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, identifier: str, cause: Exception | None = None):
        self.operation = operation
        self.identifier = identifier
        self.cause = cause
        message = f"{operation} failed for {identifier}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class NotAuthoritative(VisageError):
    """A mutation was attempted by a process that does not hold the lease."""

    error_code = "NOT_AUTHORITATIVE"

    def __init__(self, holder_id: str, current_holder: str | None = None):
        self.holder_id = holder_id
        self.current_holder = current_holder
        super().__init__(
            f"{holder_id} is not the authoritative writer"
            + (f" (held by {current_holder})" if current_holder else "")
        )
