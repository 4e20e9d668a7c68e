from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class GitHubSourceConfig:
    owner: str
    repo: str
    branch: str = "main"
    root_path: str = "/"
    token: str = ""

    @property
    def root_prefix(self) -> str:
        """Root path without leading/trailing slashes; empty for the repository root."""
        return self.root_path.strip("/")

    def repo_path(self, path: str) -> str:
        """Join a root-relative task path onto the configured root path."""
        parts = [p.strip("/") for p in (self.root_path, path)]
        return "/".join(p for p in parts if p)


@dataclass(frozen=True, slots=True)
class RemoteSource:
    """A configured remote-backed task source."""

    id: str
    name: str
    config: GitHubSourceConfig


@dataclass(frozen=True, slots=True)
class RemoteEntry:
    path: str
    integrity_token: str
    size: int = 0


@dataclass(frozen=True, slots=True)
class RemoteFile:
    content: str
    integrity_token: str


@dataclass(frozen=True, slots=True)
class RateLimit:
    remaining: int
    limit: int
    reset_epoch_seconds: int


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    task_count: int = 0
    error: Optional[str] = None
    rate_limit: Optional[RateLimit] = None


_URL_PATTERNS = (
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+)/tree/([^/]+)(?:/(.*))?$"),
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)/?$"),
)


def parse_github_url(url: str) -> Optional[dict[str, str]]:
    """
    Extract owner, repo, branch and root path from a GitHub web URL.

    Accepts `https://github.com/owner/repo` and
    `https://github.com/owner/repo/tree/branch[/path/to/folder]`.
    Returns None when the URL matches neither form.
    """
    raw = url.strip()
    for pattern in _URL_PATTERNS:
        match = pattern.match(raw)
        if not match:
            continue
        groups = match.groups()
        branch = groups[2] if len(groups) > 2 and groups[2] else "main"
        sub_path = groups[3] if len(groups) > 3 and groups[3] else ""
        return {
            "owner": groups[0],
            "repo": groups[1],
            "branch": branch,
            "root_path": f"/{sub_path.strip('/')}" if sub_path.strip("/") else "/",
        }
    return None


def build_github_url(config: GitHubSourceConfig) -> str:
    base_path = "" if not config.root_prefix else f"/{config.root_prefix}"
    return f"https://github.com/{config.owner}/{config.repo}/tree/{config.branch}{base_path}"
