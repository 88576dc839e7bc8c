"""Error taxonomy shared by every core service.

Each error carries one human-readable message suitable for showing to the
end user as-is.
"""

from __future__ import annotations


class WorkboardError(Exception):
    """Base class for all errors raised by the core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkboardError):
    """Malformed input; the caller can fix it and try again."""


class AuthorizationError(WorkboardError):
    """The acting user lacks the privilege for this operation."""


class NotFoundError(WorkboardError):
    """Unknown task or user id."""


class NotActionableError(WorkboardError):
    """The transition is illegal in the task's current state or window."""


class ConflictError(WorkboardError):
    """A concurrent writer changed the record first; reload and retry."""


class PersistenceError(WorkboardError):
    """Storage kept failing after the retry budget was spent."""
