"""Domain error taxonomy raised by the connection and repository layers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .diagnostics import ErrorType


class CrmError(RuntimeError):
    """Base class for every error that may cross the repository boundary.

    - message: human-friendly text, safe to show in the UI
    - operation: name of the repository/connection operation that failed
    - entity: short description of the entity involved (e.g. an e-mail)
    - sqlstate: vendor state code of the underlying driver error, if any
    - error_type: classifier category of the underlying driver error, if any
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        entity: str | None = None,
        sqlstate: str | None = None,
        error_type: ErrorType | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.entity = entity
        self.sqlstate = sqlstate
        self.error_type = error_type


class TransientConnectionError(CrmError):
    """The database could not be reached (after exhausting the retry budget)."""

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts


class SchemaValidationError(CrmError):
    """A required table or column is missing; the connection is unusable."""

    def __init__(self, message: str, *, missing: Iterable[str] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.missing = tuple(missing)


class IntegrityViolationError(CrmError):
    """Unique, foreign-key, not-null or check constraint rejected a write."""

    def __init__(self, message: str, *, constraint: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.constraint = constraint


class SyntaxOrAccessError(CrmError):
    """The statement was malformed or the user lacks privileges for it."""


class NotFoundError(CrmError):
    """The entity addressed by an operation does not exist."""

    def __init__(self, message: str, *, entity_id: object = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.entity_id = entity_id


class NotFoundOnMutateError(CrmError):
    """An UPDATE/DELETE affected fewer rows than expected."""

    def __init__(self, message: str, *, expected_rows: int = 1, affected_rows: int = 0, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.expected_rows = expected_rows
        self.affected_rows = affected_rows


class ConcurrentModificationError(NotFoundOnMutateError):
    """The row existed when checked but vanished before the mutation ran."""


class ValidationFailedError(CrmError):
    """The caller passed an entity that cannot be persisted as given."""


class DatabaseOperationError(CrmError):
    """A driver error that does not fit any more specific category."""


class UnexpectedDatabaseError(CrmError):
    """Catch-all for non-driver failures raised inside a repository operation."""


__all__ = [
    "ConcurrentModificationError",
    "CrmError",
    "DatabaseOperationError",
    "IntegrityViolationError",
    "NotFoundError",
    "NotFoundOnMutateError",
    "SchemaValidationError",
    "SyntaxOrAccessError",
    "TransientConnectionError",
    "UnexpectedDatabaseError",
    "ValidationFailedError",
]
