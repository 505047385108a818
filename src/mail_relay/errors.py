"""
Exception types raised by the relay.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigError(RelayError, ValueError):
    """Raised when the configuration is missing or invalid."""


class StoreLockedError(RelayError):
    """Raised when a forwarded-ID store file is already held by another owner."""

    def __init__(self, path) -> None:
        super().__init__(f"Forwarded-ID store is locked by another process: {path}")
        self.path = path


class InitializationError(RelayError):
    """Raised when an account fails its startup connection check."""


class NoActiveAccountsError(RelayError):
    """Raised when no account survives startup initialization."""
