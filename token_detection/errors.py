"""Exception types raised by the token detection engine."""

from __future__ import annotations

from typing import Iterable


class TokenDetectionError(Exception):
    """Base class for token detection failures."""


class ConfigurationError(TokenDetectionError):
    """Raised when the controller is wired or configured incorrectly."""

    def __init__(self, message: str, *, missing: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)


class OracleUnavailable(TokenDetectionError):
    """Raised when a balance query cannot be answered."""


class PersistenceError(TokenDetectionError):
    """Raised when detected tokens cannot be written to the token store."""


__all__ = [
    "TokenDetectionError",
    "ConfigurationError",
    "OracleUnavailable",
    "PersistenceError",
]
