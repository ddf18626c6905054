"""Error taxonomy for the quiz core.

A gate rejection is not an error: it is returned as a ``GateDecision`` with
``allowed=False``.
"""

from __future__ import annotations


class QuizGateError(Exception):
    """Base class for all core errors."""


class InvalidInputError(QuizGateError):
    """Raised for malformed identifiers, pause points or answer payloads."""


class NotFoundError(QuizGateError):
    """Raised when a quiz, question or participant does not exist."""


class StoreUnavailableError(QuizGateError):
    """Raised when the backing quiz store cannot be reached."""
