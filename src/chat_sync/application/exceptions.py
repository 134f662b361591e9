from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class AuthError(AppError):
    pass


class TransportError(AppError):
    pass


class ValidationError(AppError):
    pass


class ReconciliationMiss(AppError):
    """An event referenced a message id the store has not seen."""


class MalformedEvent(AppError):
    pass


class SessionClosed(AppError):
    """The client was closed; build a new one for the next session."""
