from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional

from taskflow.utils import EPOCH, format_rfc3339

Resolution = Literal["local", "remote", "merged"]


class SyncStage(str, Enum):
    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class CachedFile:
    """
    Cached state of one remote file.

    `integrity_token` is None while no remote version has been observed (a file
    created locally and not pushed yet). The entry is dirty exactly when
    `local_content` is set.
    """

    path: str
    content: str = ""
    integrity_token: Optional[str] = None
    cached_at: datetime = EPOCH
    local_content: Optional[str] = None

    @property
    def is_dirty(self) -> bool:
        return self.local_content is not None

    @property
    def is_new(self) -> bool:
        return self.integrity_token is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "content": self.content,
            "integrity_token": self.integrity_token,
            "cached_at": format_rfc3339(self.cached_at),
            "is_dirty": self.is_dirty,
            "local_content": self.local_content,
        }


@dataclass(slots=True)
class SourceCache:
    source_id: str
    files: Dict[str, CachedFile] = field(default_factory=dict)
    last_refresh: datetime = EPOCH


@dataclass(frozen=True, slots=True)
class SyncConflict:
    path: str
    local_content: str
    remote_content: str
    # Content cached before the local edit: the common ancestor of both sides.
    base_content: str
    local_integrity_token: Optional[str]
    remote_integrity_token: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "local_integrity_token": self.local_integrity_token,
            "remote_integrity_token": self.remote_integrity_token,
        }


@dataclass(frozen=True, slots=True)
class MergeResult:
    success: bool
    has_conflicts: bool
    content: Optional[str] = None
    conflict_markers: Optional[str] = None


@dataclass(slots=True)
class SyncResult:
    success: bool = True
    pulled: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    conflicts: list[SyncConflict] = field(default_factory=list)
    error: Optional[str] = None

    def fail(self, error: str) -> "SyncResult":
        self.success = False
        self.error = error
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "pulled": list(self.pulled),
            "pushed": list(self.pushed),
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "error": self.error,
        }
