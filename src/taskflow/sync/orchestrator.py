from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from taskflow.github.errors import ConflictError, NotFoundError, RemoteError
from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import RemoteSource
from taskflow.sync.conflicts import check_conflict
from taskflow.sync.errors import SyncInProgressError
from taskflow.sync.file_cache import FileCache
from taskflow.sync.models import SyncConflict, SyncResult, SyncStage
from taskflow.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)

DEFAULT_COMMIT_MESSAGE_PREFIX = "TaskFlow sync"


def _conflicts_message(count: int) -> str:
    return f"{count} conflict(s) detected. Resolve before pushing."


class SyncOrchestrator:
    """
    Pull, push and sync between a `FileCache` and the remote repository.

    Files are processed one at a time. A push checks every dirty file for
    conflicts before the first write and writes nothing if any is found.
    Operations on the same source are mutually exclusive; starting one while
    another runs raises `SyncInProgressError`.
    """

    def __init__(
        self,
        adapter: RemoteContentAdapter,
        cache: FileCache,
        *,
        commit_message_prefix: str = DEFAULT_COMMIT_MESSAGE_PREFIX,
    ):
        self._adapter = adapter
        self._cache = cache
        self._commit_message_prefix = commit_message_prefix
        self._locks: Dict[str, asyncio.Lock] = {}
        self._stages: Dict[str, SyncStage] = {}

    def default_commit_message(self) -> str:
        return f"{self._commit_message_prefix}: {format_rfc3339(utc_now())}"

    def stage(self, source_id: str) -> SyncStage:
        return self._stages.get(source_id, SyncStage.IDLE)

    @asynccontextmanager
    async def _exclusive(self, source_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(source_id, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(source_id)
        async with lock:
            yield

    async def _run(self, source_id: str, operation: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        """Run one sync operation under the source lock; the stage ends in DONE or FAILED even if it raises."""
        async with self._exclusive(source_id):
            succeeded = False
            try:
                result = await operation()
                succeeded = result.success
                return result
            finally:
                self._stages[source_id] = SyncStage.DONE if succeeded else SyncStage.FAILED

    async def pull(self, source: RemoteSource) -> SyncResult:
        return await self._run(source.id, lambda: self._pull(source))

    async def push(self, source: RemoteSource, commit_message: Optional[str] = None) -> SyncResult:
        message = commit_message or self.default_commit_message()
        return await self._run(source.id, lambda: self._push(source, message))

    async def sync(self, source: RemoteSource, commit_message: Optional[str] = None) -> SyncResult:
        message = commit_message or self.default_commit_message()
        return await self._run(source.id, lambda: self._sync(source, message))

    async def _sync(self, source: RemoteSource, commit_message: str) -> SyncResult:
        pull_result = await self._pull(source)
        if not pull_result.success:
            return pull_result

        push_result = await self._push(source, commit_message)
        return SyncResult(
            success=push_result.success,
            pulled=pull_result.pulled,
            pushed=push_result.pushed,
            conflicts=push_result.conflicts,
            error=push_result.error,
        )

    async def _pull(self, source: RemoteSource) -> SyncResult:
        self._stages[source.id] = SyncStage.PULLING
        result = SyncResult()

        try:
            listing = await self._adapter.list_files(source.config)
        except RemoteError as e:
            logger.warning("Pull failed while listing remote files. source_id=%s error=%s", source.id, e)
            return result.fail(str(e))

        dirty_paths = {entry.path for entry in self._cache.list_dirty_files(source.id)}
        for remote_entry in listing:
            if remote_entry.path in dirty_paths:
                continue
            try:
                await self._cache.read_file(source, remote_entry.path, force=True)
            except NotFoundError:
                logger.info("Remote file vanished during pull. source_id=%s path=%s", source.id, remote_entry.path)
                self._cache.forget(source.id, remote_entry.path)
                continue
            except RemoteError as e:
                logger.warning(
                    "Pull stopped on fetch failure. source_id=%s path=%s pulled=%d error=%s",
                    source.id,
                    remote_entry.path,
                    len(result.pulled),
                    e,
                )
                return result.fail(f"Failed to pull {remote_entry.path}: {e}")
            result.pulled.append(remote_entry.path)

        logger.info(
            "Pull completed. source_id=%s pulled=%d skipped_dirty=%d",
            source.id,
            len(result.pulled),
            len(dirty_paths),
        )
        return result

    async def _find_conflicts(self, source: RemoteSource) -> list[SyncConflict]:
        conflicts: list[SyncConflict] = []
        for cached_file in self._cache.list_dirty_files(source.id):
            conflict = await check_conflict(self._adapter, source, cached_file)
            if conflict is not None:
                conflicts.append(conflict)
        return conflicts

    async def _push(self, source: RemoteSource, commit_message: str) -> SyncResult:
        result = SyncResult()
        dirty_files = self._cache.list_dirty_files(source.id)
        if not dirty_files:
            return result

        self._stages[source.id] = SyncStage.PUSHING

        try:
            result.conflicts = await self._find_conflicts(source)
        except RemoteError as e:
            logger.warning("Push failed during conflict check. source_id=%s error=%s", source.id, e)
            return result.fail(str(e))

        if result.conflicts:
            logger.info("Push aborted by conflicts. source_id=%s conflicts=%d", source.id, len(result.conflicts))
            return result.fail(_conflicts_message(len(result.conflicts)))

        for cached_file in dirty_files:
            content = cached_file.local_content
            assert content is not None
            try:
                new_token = await self._adapter.put_file(
                    source.config,
                    cached_file.path,
                    content,
                    commit_message,
                    cached_file.integrity_token,
                )
            except ConflictError as e:
                # The remote moved between the conflict check and this write.
                logger.info(
                    "Push write rejected by a remote change. source_id=%s path=%s pushed=%d error=%s",
                    source.id,
                    cached_file.path,
                    len(result.pushed),
                    e,
                )
                try:
                    conflict = await check_conflict(self._adapter, source, cached_file)
                except RemoteError as check_error:
                    return result.fail(f"Failed to push {cached_file.path}: {check_error}")
                if conflict is None:
                    return result.fail(f"Failed to push {cached_file.path}: {e}")
                result.conflicts.append(conflict)
                return result.fail(_conflicts_message(len(result.conflicts)))
            except RemoteError as e:
                logger.warning(
                    "Push stopped on write failure. source_id=%s path=%s pushed=%d error=%s",
                    source.id,
                    cached_file.path,
                    len(result.pushed),
                    e,
                )
                return result.fail(f"Failed to push {cached_file.path}: {e}")

            current = self._cache.peek(source.id, cached_file.path)
            if current is not None and current.local_content not in (None, content):
                # Edited again while the write was in flight; keep the newer edit dirty.
                self._cache.rebase(source.id, cached_file.path, content, new_token)
            else:
                self._cache.commit_push(source.id, cached_file.path, content, new_token)
            result.pushed.append(cached_file.path)

        logger.info("Push completed. source_id=%s pushed=%d", source.id, len(result.pushed))
        return result

    async def check_conflicts(self, source: RemoteSource) -> list[SyncConflict]:
        """Conflict-check the dirty set without writing anything."""
        async with self._exclusive(source.id):
            return await self._find_conflicts(source)

    async def delete_file(self, source: RemoteSource, path: str, commit_message: Optional[str] = None) -> None:
        """
        Delete `path` from the remote and drop it from the cache.

        Uses the cached integrity token when one is known. A file that only
        exists locally is simply forgotten. Adapter errors propagate.
        """
        async with self._exclusive(source.id):
            cached = self._cache.peek(source.id, path)
            token = cached.integrity_token if cached is not None else None
            if token is None:
                try:
                    token = (await self._adapter.get_file(source.config, path)).integrity_token
                except NotFoundError:
                    if cached is None:
                        raise
                    self._cache.forget(source.id, path)
                    return
            await self._adapter.delete_file(
                source.config,
                path,
                commit_message or self.default_commit_message(),
                token,
            )
            self._cache.forget(source.id, path)
            logger.info("Deleted remote file. source_id=%s path=%s", source.id, path)

    def status(self, source: RemoteSource) -> Dict[str, Any]:
        dirty = self._cache.list_dirty_files(source.id)
        return {
            "source_id": source.id,
            "stage": self.stage(source.id).value,
            "has_unsaved_changes": bool(dirty),
            "dirty": sorted(entry.path for entry in dirty),
            "last_refresh": format_rfc3339(self._cache.last_refresh(source.id)),
        }
