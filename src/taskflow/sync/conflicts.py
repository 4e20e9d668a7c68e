from __future__ import annotations

import logging
from typing import Optional

from taskflow.github.errors import NotFoundError
from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import RemoteSource
from taskflow.sync.file_cache import FileCache
from taskflow.sync.models import CachedFile, MergeResult, Resolution, SyncConflict

logger = logging.getLogger(__name__)

LOCAL_MARKER = "<<<<<<< LOCAL"
SEPARATOR_MARKER = "======="
REMOTE_MARKER = ">>>>>>> REMOTE"


async def check_conflict(
    adapter: RemoteContentAdapter,
    source: RemoteSource,
    cached_file: CachedFile,
) -> Optional[SyncConflict]:
    """
    Compare a dirty entry against the current remote version.

    Returns None when the remote file is gone (the push creates it) or still
    carries the token the entry was cached with. Other adapter errors propagate.
    """
    try:
        remote = await adapter.get_file(source.config, cached_file.path)
    except NotFoundError:
        return None

    if remote.integrity_token == cached_file.integrity_token:
        return None

    logger.info(
        "Remote file changed since it was cached. source_id=%s path=%s local_token=%s remote_token=%s",
        source.id,
        cached_file.path,
        cached_file.integrity_token,
        remote.integrity_token,
    )
    local_content = cached_file.local_content if cached_file.local_content is not None else cached_file.content
    return SyncConflict(
        path=cached_file.path,
        local_content=local_content,
        remote_content=remote.content,
        base_content=cached_file.content,
        local_integrity_token=cached_file.integrity_token,
        remote_integrity_token=remote.integrity_token,
    )


def merge(conflict: SyncConflict) -> MergeResult:
    """
    Line-based three-way merge of local and remote against the base content.

    Lines are compared by position only: no diff alignment is done, so an
    insertion on one side shifts every following line and usually shows up as
    conflicts. Conflicting lines are emitted as a LOCAL/REMOTE marker block.
    """
    base_lines = conflict.base_content.split("\n")
    local_lines = conflict.local_content.split("\n")
    remote_lines = conflict.remote_content.split("\n")

    merged: list[str] = []
    has_conflicts = False
    for i in range(max(len(base_lines), len(local_lines), len(remote_lines))):
        base_line = base_lines[i] if i < len(base_lines) else ""
        local_line = local_lines[i] if i < len(local_lines) else ""
        remote_line = remote_lines[i] if i < len(remote_lines) else ""

        if local_line == remote_line:
            merged.append(local_line)
        elif local_line == base_line:
            merged.append(remote_line)
        elif remote_line == base_line:
            merged.append(local_line)
        else:
            has_conflicts = True
            merged.extend([LOCAL_MARKER, local_line, SEPARATOR_MARKER, remote_line, REMOTE_MARKER])

    text = "\n".join(merged)
    if has_conflicts:
        return MergeResult(success=False, has_conflicts=True, conflict_markers=text)
    return MergeResult(success=True, has_conflicts=False, content=text)


def resolve_conflict(
    cache: FileCache,
    source: RemoteSource,
    conflict: SyncConflict,
    resolution: Resolution,
    merged_content: Optional[str] = None,
) -> None:
    """
    Stage the chosen outcome of a conflict as a local edit.

    The entry is rebased onto the remote version observed in the conflict, so
    the next push succeeds unless the remote changes again. Nothing is pushed here.
    """
    if resolution == "local":
        final_content = conflict.local_content
    elif resolution == "remote":
        final_content = conflict.remote_content
    elif resolution == "merged":
        if merged_content is None:
            raise ValueError("Merged content required for merged resolution")
        final_content = merged_content
    else:
        raise ValueError(f"Unknown conflict resolution: {resolution}")

    cache.rebase(source.id, conflict.path, conflict.remote_content, conflict.remote_integrity_token)
    cache.write_file_locally(source.id, conflict.path, final_content)
    logger.info("Conflict resolved locally. source_id=%s path=%s resolution=%s", source.id, conflict.path, resolution)
