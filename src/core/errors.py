from __future__ import annotations

from typing import Hashable


class DeviceContextError(Exception):
    """Base error for the device context server."""


class InvalidConfigurationError(DeviceContextError, ValueError):
    """Raised when cache or server settings are out of range."""


class ComputationError(DeviceContextError):
    """Raised to waiters when a shared computation ended without an outcome."""

    def __init__(self, key: Hashable, message: str) -> None:
        super().__init__(f"{message} (key={key!r})")
        self.key = key


class ValidationError(DeviceContextError):
    """Raised when user input is invalid."""


class ExternalServiceError(DeviceContextError):
    """Raised when the retrieval backend fails."""


class NotFoundError(DeviceContextError):
    """Raised when a requested resource is not found."""
