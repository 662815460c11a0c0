"""Treasure hunt error taxonomy.

Expected outcomes (wrong answer, already completed) are result values.
These exceptions cover requests that cannot proceed at all.
"""

from __future__ import annotations


class HuntError(Exception):
    """Base class for engine errors. ``status_code`` is the HTTP mapping."""

    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(HuntError):
    """Request is not valid in the current state (hunt closed, budget spent, ...)."""

    status_code = 400


class NotFoundError(HuntError):
    """Hunt, clue or participation does not exist."""

    status_code = 404


class ConcurrencyConflict(HuntError):
    """Lost a race on a participation or the hunt's completion section."""

    status_code = 409
    retryable = True


class ExternalServiceError(HuntError):
    """Crediting or notification collaborator failed."""

    status_code = 502
    retryable = True
