from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import quote

import aiohttp

from taskflow.config.models import GitHubSettings
from taskflow.github.errors import (
    ConflictError,
    InvalidContentError,
    NotFoundError,
    RateLimitedError,
    RemoteError,
    RemoteUnavailableError,
    UnauthorizedError,
)
from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import (
    GitHubSourceConfig,
    RateLimit,
    RemoteEntry,
    RemoteFile,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"
_IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})


def _error_for_status(status: int, headers: Mapping[str, str], body: str) -> RemoteError:
    message = f"HTTP {status}: {body[:200]}"
    if status == 404:
        return NotFoundError(message, status=status)
    if status == 429 or (status == 403 and headers.get("X-RateLimit-Remaining") == "0"):
        return RateLimitedError(message, status=status)
    if status in (401, 403):
        return UnauthorizedError(message, status=status)
    if status in (409, 422):
        return ConflictError(message, status=status)
    if status >= 500:
        return RemoteUnavailableError(message, status=status)
    return RemoteError(message, status=status)


def _decode_content(path: str, raw: Any, encoding: str) -> str:
    if not isinstance(raw, str):
        raise InvalidContentError(f"No content returned for '{path}'")
    if encoding == "utf-8":
        return raw
    if encoding != "base64":
        raise InvalidContentError(f"Unsupported content encoding for '{path}': {encoding}")
    try:
        return base64.b64decode(raw).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise InvalidContentError(f"'{path}' is not valid UTF-8 text: {e}") from e


def _is_markdown_under_root(item: Mapping[str, Any], root_prefix: str) -> bool:
    path = item.get("path") or ""
    if item.get("type") != "blob" or not path.endswith(".md"):
        return False
    return root_prefix == "" or path == root_prefix or path.startswith(root_prefix + "/")


class GitHubContentAdapter(RemoteContentAdapter):
    """RemoteContentAdapter backed by the GitHub REST API (contents and git trees)."""

    def __init__(self, settings: GitHubSettings):
        self._settings = settings

    def _headers(self, config: GitHubSourceConfig) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": _API_VERSION,
            "User-Agent": self._settings.user_agent,
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        return headers

    def _repo_url(self, config: GitHubSourceConfig, suffix: str = "") -> str:
        base = self._settings.api_base_url.rstrip("/")
        return f"{base}/repos/{quote(config.owner)}/{quote(config.repo)}{suffix}"

    def _contents_url(self, config: GitHubSourceConfig, path: str) -> str:
        return self._repo_url(config, f"/contents/{quote(config.repo_path(path))}")

    async def _request(
        self,
        method: str,
        url: str,
        config: GitHubSourceConfig,
        *,
        params: Optional[Mapping[str, str]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Send one API call and return the decoded JSON body (None for 204).

        Reads are retried on server and transport errors. Writes are only retried
        when the connection could not be opened: a write that reached the server
        may have landed even if the response was an error.
        """
        last_error: Optional[RemoteError] = None
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        retry_on_response = method in _IDEMPOTENT_METHODS
        for attempt in range(self._settings.max_retries + 1):
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.request(
                        method,
                        url,
                        headers=self._headers(config),
                        params=params,
                        json=json_body,
                    ) as resp:
                        if 200 <= resp.status < 300:
                            if resp.status == 204:
                                return None
                            try:
                                return await resp.json(content_type=None)
                            except ValueError as e:
                                raise InvalidContentError(
                                    f"GitHub returned a non-JSON body. method={method} url={url}",
                                    status=resp.status,
                                ) from e

                        body = await resp.text()
                        error = _error_for_status(resp.status, resp.headers, body)
                        if not isinstance(error, RemoteUnavailableError) or not retry_on_response:
                            raise error
                        logger.warning(
                            "GitHub request failed and will be retried. method=%s url=%s status=%s attempt=%s",
                            method,
                            url,
                            resp.status,
                            attempt + 1,
                        )
                        last_error = error
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = RemoteUnavailableError(f"Network error: {str(e) or type(e).__name__}")
                last_error.__cause__ = e
                if not retry_on_response and not isinstance(e, aiohttp.ClientConnectorError):
                    logger.warning(
                        "GitHub write failed after it was sent, not retrying. method=%s url=%s error=%s",
                        method,
                        url,
                        str(e) or type(e).__name__,
                    )
                    raise last_error
                logger.warning(
                    "GitHub request encountered a network error and will be retried. method=%s url=%s error=%s attempt=%s",
                    method,
                    url,
                    str(e) or type(e).__name__,
                    attempt + 1,
                )

            if attempt < self._settings.max_retries:
                await asyncio.sleep(0.5 * (2**attempt))

        assert last_error is not None
        raise last_error

    async def list_files(self, config: GitHubSourceConfig) -> Sequence[RemoteEntry]:
        ref = await self._request("GET", self._repo_url(config, f"/git/ref/heads/{quote(config.branch)}"), config)
        tree_sha = ref["object"]["sha"]
        tree = await self._request(
            "GET",
            self._repo_url(config, f"/git/trees/{tree_sha}"),
            config,
            params={"recursive": "1"},
        )
        if tree.get("truncated"):
            logger.warning("GitHub tree listing was truncated. repo=%s/%s", config.owner, config.repo)

        root_prefix = config.root_prefix
        entries: list[RemoteEntry] = []
        for item in tree.get("tree", []):
            if not _is_markdown_under_root(item, root_prefix):
                continue
            path = item["path"]
            if root_prefix:
                path = path[len(root_prefix) + 1 :] if path != root_prefix else path
            entries.append(RemoteEntry(path=path, integrity_token=item.get("sha", ""), size=int(item.get("size") or 0)))
        logger.debug("Listed remote task files. repo=%s/%s count=%d", config.owner, config.repo, len(entries))
        return entries

    async def get_file(self, config: GitHubSourceConfig, path: str) -> RemoteFile:
        data = await self._request("GET", self._contents_url(config, path), config, params={"ref": config.branch})
        if isinstance(data, list):
            raise RemoteError(f"Path '{path}' is a directory, not a file")
        if not isinstance(data, dict) or not isinstance(data.get("sha"), str):
            raise InvalidContentError(f"Malformed contents response for '{path}'")

        sha = data["sha"]
        encoding = data.get("encoding", "base64")
        if encoding == "none":
            # Files over 1 MB come back without content; the blob API still serves them.
            logger.debug("Fetching large file through the blob API. path=%s sha=%s", path, sha)
            data = await self._request("GET", self._repo_url(config, f"/git/blobs/{sha}"), config)
            if not isinstance(data, dict):
                raise InvalidContentError(f"Malformed blob response for '{path}'")
            encoding = data.get("encoding", "base64")

        return RemoteFile(content=_decode_content(path, data.get("content"), encoding), integrity_token=sha)

    async def put_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        content: str,
        message: str,
        expected_integrity_token: Optional[str] = None,
    ) -> str:
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": config.branch,
        }
        if expected_integrity_token is not None:
            body["sha"] = expected_integrity_token
        data = await self._request("PUT", self._contents_url(config, path), config, json_body=body)
        # The blob sha of the new content, not the commit sha, is what later reads return.
        return data["content"]["sha"]

    async def delete_file(
        self,
        config: GitHubSourceConfig,
        path: str,
        message: str,
        integrity_token: str,
    ) -> None:
        body = {"message": message, "sha": integrity_token, "branch": config.branch}
        await self._request("DELETE", self._contents_url(config, path), config, json_body=body)

    async def get_rate_limit(self, config: GitHubSourceConfig) -> RateLimit:
        base = self._settings.api_base_url.rstrip("/")
        data = await self._request("GET", f"{base}/rate_limit", config)
        rate = data["rate"]
        return RateLimit(
            remaining=int(rate["remaining"]),
            limit=int(rate["limit"]),
            reset_epoch_seconds=int(rate["reset"]),
        )

    async def validate_connection(self, config: GitHubSourceConfig) -> ValidationResult:
        """Check repository access, branch and root path, and count task files."""
        try:
            await self._request("GET", self._repo_url(config), config)
            try:
                await self._request("GET", self._repo_url(config, f"/branches/{quote(config.branch)}"), config)
            except NotFoundError:
                return ValidationResult(valid=False, error=f"Branch '{config.branch}' not found")

            if config.root_prefix:
                try:
                    listing = await self._request(
                        "GET",
                        self._repo_url(config, f"/contents/{quote(config.root_prefix)}"),
                        config,
                        params={"ref": config.branch},
                    )
                except NotFoundError:
                    return ValidationResult(valid=False, error=f"Path '{config.root_path}' not found in repository")
                if not isinstance(listing, list):
                    return ValidationResult(valid=False, error=f"Path '{config.root_path}' is not a directory")

            entries = await self.list_files(config)
            rate_limit = await self.get_rate_limit(config)
            return ValidationResult(valid=True, task_count=len(entries), rate_limit=rate_limit)
        except RemoteError as e:
            logger.warning("GitHub source validation failed. repo=%s/%s error=%s", config.owner, config.repo, e)
            return ValidationResult(valid=False, error=str(e))
