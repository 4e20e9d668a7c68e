from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict

from taskflow.github.models import GitHubSourceConfig, RemoteSource


class FileRotationSettings(BaseModel):
    """
    Date-based rotation settings (daily).

    This maps cleanly to Python's standard library TimedRotatingFileHandler behavior.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backup_count: int = 7


class FileLoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ""
    rotation: FileRotationSettings = FileRotationSettings()


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = "INFO"
    file: FileLoggingSettings = FileLoggingSettings()
    # Per-logger levels, e.g. {"taskflow.github.client": "DEBUG"} to trace API calls.
    loggers: Dict[str, str] = {"aiohttp": "WARNING"}


class CacheSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ttl_seconds: float = 300.0
    # Empty disables persisting unpushed edits between runs.
    dirty_state_path: str = ""


class GitHubSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_base_url: str = "https://api.github.com"
    timeout_seconds: float = 30.0
    max_retries: int = 2
    user_agent: str = "taskflow-sync"


class SyncSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    commit_message_prefix: str = "TaskFlow sync"


class SourceSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    owner: str
    repo: str
    branch: str = "main"
    root_path: str = "/"
    token: str = ""

    def to_source(self, source_id: str) -> RemoteSource:
        return RemoteSource(
            id=source_id,
            name=self.name or f"{self.owner}/{self.repo}",
            config=GitHubSourceConfig(
                owner=self.owner,
                repo=self.repo,
                branch=self.branch,
                root_path=self.root_path,
                token=self.token,
            ),
        )


class AppConfig(BaseModel):
    """Effective runtime configuration after applying all precedence rules."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    logging: LoggingSettings = LoggingSettings()
    cache: CacheSettings = CacheSettings()
    github: GitHubSettings = GitHubSettings()
    sync: SyncSettings = SyncSettings()
    sources: Dict[str, SourceSettings] = {}

    def get_source(self, source_id: Optional[str]) -> RemoteSource:
        """
        Resolve a configured source.

        With no id, the only configured source is used; ambiguity is an error.
        """
        if source_id is None:
            if len(self.sources) != 1:
                raise ValueError(
                    f"Specify a source id; configured sources: {', '.join(sorted(self.sources)) or '(none)'}"
                )
            source_id = next(iter(self.sources))
        settings = self.sources.get(source_id)
        if settings is None:
            raise KeyError(f"Unknown source id: {source_id}")
        return settings.to_source(source_id)


@dataclass(frozen=True, slots=True)
class ConfigLoadRequest:
    """
    Optional inputs for a configuration loader.

    Implementations may use these to control where configuration is read from.
    """

    yaml_path: str = "data/config/config.yaml"
    env_prefix: str = "TASKFLOW__"
    dotenv_path: Optional[str] = "data/.env"
