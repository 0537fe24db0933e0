from __future__ import annotations


class NotFoundError(LookupError):
    """Raised when a row does not exist or belongs to another user."""


class ValidationError(ValueError):
    """Raised for well-formed requests that carry out-of-range values."""
