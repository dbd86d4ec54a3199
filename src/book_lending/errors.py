"""
Error taxonomy for the book lending service.

Every failure that leaves a repository or the transaction engine is one of
these classes. Callers (the HTTP layer, MCP tools) translate them into their
own response formats; no raw SQLAlchemy exception is meant to cross this line.

- ValidationError: malformed or semantically invalid input
- NotFoundError: a referenced book or transaction does not exist
- ForbiddenError: the actor lacks the required relationship (e.g. not the owner)
- ConflictError: a state precondition does not hold (not available, duplicate,
  already resolved)
- AuthenticationError: no verified identity accompanied the call
- InfrastructureError: the datastore is unreachable, timed out or too contended;
  safe for the caller to retry
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """One offending input field."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class LendingError(Exception):
    """Base class for all service errors."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        errors: list[FieldError] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.errors: list[FieldError] = list(errors or [])
        if field is not None:
            self.errors.append(FieldError(field=field, message=message))

    @property
    def field(self) -> str | None:
        """Name of the first offending field, if any."""
        return self.errors[0].field if self.errors else None


class ValidationError(LendingError):
    """Raised when input is malformed or semantically invalid."""


class NotFoundError(LendingError):
    """Raised when a referenced entity does not exist."""


class ForbiddenError(LendingError):
    """Raised when the actor is not allowed to perform the operation."""


class ConflictError(LendingError):
    """Raised when the current state does not allow the operation."""


class AuthenticationError(LendingError):
    """Raised when no verified member identity is available."""


class InfrastructureError(LendingError):
    """Raised when the datastore fails; the operation had no effect."""

    retryable = True
