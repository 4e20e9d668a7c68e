from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Optional, Sequence

from taskflow.github.errors import ConflictError, NotFoundError
from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import GitHubSourceConfig, RemoteEntry, RemoteFile
from taskflow.utils import git_blob_sha

logger = logging.getLogger(__name__)


class InMemoryContentAdapter(RemoteContentAdapter):
    """
    A dict-backed remote repository.

    Files are keyed by root-relative path and versioned with git blob SHAs, so
    tokens behave like the ones GitHub hands out. Every call is counted in
    `calls` for assertions on I/O.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self._files: Dict[str, str] = dict(files or {})
        self.calls: Counter[str] = Counter()
        self.commit_messages: list[str] = []

    def set_remote(self, path: str, content: str) -> str:
        """Change a file out of band, as another client would. Returns the new token."""
        self._files[path] = content
        return git_blob_sha(content)

    def remove_remote(self, path: str) -> None:
        self._files.pop(path, None)

    def remote_content(self, path: str) -> Optional[str]:
        return self._files.get(path)

    @property
    def write_count(self) -> int:
        return self.calls["put_file"] + self.calls["delete_file"]

    async def list_files(self, config: GitHubSourceConfig) -> Sequence[RemoteEntry]:
        self.calls["list_files"] += 1
        return [
            RemoteEntry(path=path, integrity_token=git_blob_sha(content), size=len(content.encode("utf-8")))
            for path, content in sorted(self._files.items())
            if path.endswith(".md")
        ]

    async def get_file(self, config: GitHubSourceConfig, path: str) -> RemoteFile:
        self.calls["get_file"] += 1
        if path not in self._files:
            raise NotFoundError(f"File not found: {path}", status=404)
        content = self._files[path]
        return RemoteFile(content=content, integrity_token=git_blob_sha(content))

    async def put_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        content: str,
        message: str,
        expected_integrity_token: Optional[str] = None,
    ) -> str:
        self.calls["put_file"] += 1
        current = self._files.get(path)
        if expected_integrity_token is None and current is not None:
            raise ConflictError(f"File already exists: {path}", status=422)
        if expected_integrity_token is not None:
            if current is None:
                raise NotFoundError(f"File not found: {path}", status=404)
            if git_blob_sha(current) != expected_integrity_token:
                raise ConflictError(f"Integrity token mismatch: {path}", status=409)
        self._files[path] = content
        self.commit_messages.append(message)
        logger.debug("In-memory remote write. path=%s", path)
        return git_blob_sha(content)

    async def delete_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        message: str,
        integrity_token: str,
    ) -> None:
        self.calls["delete_file"] += 1
        current = self._files.get(path)
        if current is None:
            raise NotFoundError(f"File not found: {path}", status=404)
        if git_blob_sha(current) != integrity_token:
            raise ConflictError(f"Integrity token mismatch: {path}", status=409)
        del self._files[path]
        self.commit_messages.append(message)
