"""Custom exceptions used across the Warden permission engine."""
from __future__ import annotations


class WardenError(Exception):
    """Base exception for all engine-specific errors."""


class ValidationError(WardenError, ValueError):
    """Raised when a mutating call receives a blank node, group or principal."""


class ConfigurationError(WardenError):
    """Raised when configuration loading or validation fails."""


class PersistenceError(WardenError):
    """Raised when a snapshot cannot be read, written or validated."""


__all__ = [
    "WardenError",
    "ValidationError",
    "ConfigurationError",
    "PersistenceError",
]
