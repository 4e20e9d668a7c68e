from taskflow.github.errors import (
    ConflictError,
    InvalidContentError,
    NotFoundError,
    RateLimitedError,
    RemoteError,
    RemoteUnavailableError,
    UnauthorizedError,
)
from taskflow.github.models import GitHubSourceConfig, RemoteEntry, RemoteFile, RemoteSource

__all__ = [
    "ConflictError",
    "GitHubSourceConfig",
    "InvalidContentError",
    "NotFoundError",
    "RateLimitedError",
    "RemoteEntry",
    "RemoteError",
    "RemoteFile",
    "RemoteSource",
    "RemoteUnavailableError",
    "UnauthorizedError",
]
