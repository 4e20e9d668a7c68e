from __future__ import annotations

from typing import Optional, Sequence

from taskflow.github.models import GitHubSourceConfig, RemoteEntry, RemoteFile


class RemoteContentAdapter:
    """
    Read/write access to task files of a remote repository.

    Every file version is identified by an opaque integrity token. Writes that
    update or delete a file must present the token of the version they replace;
    a stale token fails with `ConflictError`.
    """

    async def list_files(self, config: GitHubSourceConfig) -> Sequence[RemoteEntry]:
        """Recursively list markdown files under the configured root path."""
        raise NotImplementedError

    async def get_file(self, config: GitHubSourceConfig, path: str) -> RemoteFile:
        """Fetch a file. Raises `NotFoundError` when it does not exist."""
        raise NotImplementedError

    async def put_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        content: str,
        message: str,
        expected_integrity_token: Optional[str] = None,
    ) -> str:
        """
        Create the file when `expected_integrity_token` is None, update it otherwise.

        Returns the integrity token of the written version.
        """
        raise NotImplementedError

    async def delete_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        message: str,
        integrity_token: str,
    ) -> None:
        raise NotImplementedError
