"""Custom exceptions for the Saldo application."""

from __future__ import annotations


class SaldoError(Exception):
    """Base exception for all Saldo errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FileProcessingError(SaldoError):
    """Raised when a statement file cannot be read or parsed."""

    pass


class ValidationError(SaldoError):
    """Raised when input validation fails."""

    pass


class EntityNotFoundError(SaldoError):
    """Raised when an entity is not found."""

    pass


class StoreError(SaldoError):
    """Raised when the transaction store rejects or fails a request.

    The message is the store's own error message, surfaced verbatim.
    """

    pass
