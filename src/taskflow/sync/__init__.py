from taskflow.sync.conflicts import check_conflict, merge, resolve_conflict
from taskflow.sync.errors import SyncInProgressError
from taskflow.sync.file_cache import FileCache
from taskflow.sync.models import CachedFile, MergeResult, SourceCache, SyncConflict, SyncResult, SyncStage
from taskflow.sync.orchestrator import SyncOrchestrator

__all__ = [
    "CachedFile",
    "FileCache",
    "MergeResult",
    "SourceCache",
    "SyncConflict",
    "SyncInProgressError",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStage",
    "check_conflict",
    "merge",
    "resolve_conflict",
]
