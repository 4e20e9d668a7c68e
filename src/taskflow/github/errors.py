"""
Errors raised by remote content adapters.

Callers branch on the concrete type: `NotFoundError` is frequently expected
(new files, files deleted upstream) while the others abort the current sync step.
"""

from __future__ import annotations

from typing import Optional


class RemoteError(Exception):
    """Base exception for remote repository operations."""

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(RemoteError):
    """Raised when the requested path does not exist in the remote repository."""


class UnauthorizedError(RemoteError):
    """Raised when the access token is missing, expired or lacks permissions."""


class ConflictError(RemoteError):
    """Raised when the integrity token sent with a write no longer matches the remote file."""


class RateLimitedError(RemoteError):
    """Raised when the remote host refuses requests because the quota is exhausted."""


class RemoteUnavailableError(RemoteError):
    """Raised on network or transport failures and persistent server errors."""


class InvalidContentError(RemoteError):
    """Raised when a response cannot be turned into task file content (bad encoding, missing fields)."""
