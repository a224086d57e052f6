"""Progression error kinds.

Every error carries a stable machine-readable ``kind`` and a human message;
the API layer maps ``kind`` to a status code.
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for errors raised by the progression engine."""

    kind = "progression_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ProgressionError):
    """Task, realm, user or quest missing or not owned by the caller."""

    kind = "not_found"
    status_code = 404


class ConflictError(ProgressionError):
    """Operation not allowed in the record's current state."""

    kind = "conflict"
    status_code = 409


class InvalidInputError(ProgressionError, ValueError):
    """Out-of-range values (quest target/reward, negative XP)."""

    kind = "invalid_input"
    status_code = 422


class InconsistentStateError(ProgressionError):
    """Stored records disagree with each other (e.g. completed task without a ledger entry)."""

    kind = "inconsistent"
    status_code = 500
