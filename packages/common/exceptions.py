"""Custom exception hierarchy for Memory Deck.

This module defines application-specific exceptions that provide:
- Clear error categorization for debugging
- Consistent HTTP status code mapping in API
- Structured logging context
"""

from __future__ import annotations


class MemoryDeckError(Exception):
    """Base exception for all application errors.

    All custom exceptions inherit from this to enable:
    - Centralized exception handling in API middleware
    - Consistent error logging patterns
    - Type-safe error catching
    """

    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        """Initialize error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Additional key-value pairs for structured logging.
        """
        super().__init__(message)
        self.context = context or {}


class ValidationError(MemoryDeckError):
    """Request has a bad shape or a value out of range."""


class AuthorizationError(MemoryDeckError):
    """Caller is not the owner of the requested resource."""


class NotFoundError(MemoryDeckError):
    """Requested resource not found."""


class ConflictError(MemoryDeckError):
    """Operation conflicts with current state (e.g., duplicate card)."""


class DatabaseError(MemoryDeckError):
    """Base class for database-related errors."""


class MigrationError(DatabaseError):
    """Database migration failed."""


class TransientStoreError(DatabaseError):
    """Retryable I/O fault talking to the card store (including timeouts)."""


class DataIntegrityError(MemoryDeckError):
    """A deck invariant is violated on the write path or at the store boundary."""

    def __init__(
        self,
        message: str,
        violations: list[str],
        *,
        context: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.violations = list(violations)


class ContentGenerationError(MemoryDeckError):
    """AI content collaborator failed or returned unusable output."""


class ConfigurationError(MemoryDeckError):
    """Invalid or missing configuration."""
