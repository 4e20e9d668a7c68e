from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Optional

from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import RemoteEntry, RemoteSource
from taskflow.sync.models import CachedFile, SourceCache
from taskflow.utils import EPOCH, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class FileCache:
    """
    In-memory cache of remote task files, one `SourceCache` per source.

    All reads and writes of remote-backed task files go through this object.
    Local edits are kept as `local_content` on the entry until `commit_push`
    records a successful remote write; nothing in here discards them except an
    explicit `invalidate` or `forget`. Entries returned to callers are copies.
    """

    def __init__(
        self,
        adapter: RemoteContentAdapter,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._adapter = adapter
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._caches: Dict[str, SourceCache] = {}

    def _get_cache(self, source_id: str) -> SourceCache:
        cache = self._caches.get(source_id)
        if cache is None:
            cache = SourceCache(source_id=source_id)
            self._caches[source_id] = cache
        return cache

    def _is_fresh(self, entry: CachedFile) -> bool:
        return self._clock() - entry.cached_at < self._ttl

    async def read_file(self, source: RemoteSource, path: str, *, force: bool = False) -> str:
        """
        Return the current content of `path`.

        Unpushed local content always wins. Otherwise a fresh cached copy is
        served, and a stale or missing one is fetched from the remote. `force`
        skips the freshness check. Adapter errors propagate and leave the entry as it was.
        """
        cache = self._get_cache(source.id)
        cached = cache.files.get(path)

        if cached is not None and cached.is_dirty:
            return cached.local_content  # type: ignore[return-value]

        if cached is not None and not force and self._is_fresh(cached):
            return cached.content

        remote = await self._adapter.get_file(source.config, path)

        # The adapter call is a suspension point; a local write may have landed meanwhile.
        current = cache.files.get(path)
        if current is not None and current.is_dirty:
            return current.local_content  # type: ignore[return-value]

        cache.files[path] = CachedFile(
            path=path,
            content=remote.content,
            integrity_token=remote.integrity_token,
            cached_at=self._clock(),
        )
        logger.debug("Cached remote file. source_id=%s path=%s", source.id, path)
        return remote.content

    def write_file_locally(self, source_id: str, path: str, content: str) -> None:
        cache = self._get_cache(source_id)
        existing = cache.files.get(path)
        if existing is not None:
            existing.local_content = content
            return
        cache.files[path] = CachedFile(
            path=path,
            content="",
            integrity_token=None,
            cached_at=self._clock(),
            local_content=content,
        )

    def list_dirty_files(self, source_id: str) -> list[CachedFile]:
        cache = self._get_cache(source_id)
        return [dataclasses.replace(entry) for entry in cache.files.values() if entry.is_dirty]

    def has_unsaved_changes(self, source_id: str) -> bool:
        return len(self.list_dirty_files(source_id)) > 0

    def peek(self, source_id: str, path: str) -> Optional[CachedFile]:
        entry = self._get_cache(source_id).files.get(path)
        return dataclasses.replace(entry) if entry is not None else None

    def commit_push(self, source_id: str, path: str, new_content: str, new_integrity_token: str) -> None:
        """Record a successful remote write: the pushed content becomes the clean cached version."""
        cache = self._get_cache(source_id)
        cache.files[path] = CachedFile(
            path=path,
            content=new_content,
            integrity_token=new_integrity_token,
            cached_at=self._clock(),
        )

    def rebase(self, source_id: str, path: str, base_content: str, integrity_token: str) -> None:
        """
        Move the known remote version of `path` to `base_content` / `integrity_token`.

        Local content, if any, is kept, so a dirty entry stays dirty but is now
        measured against the newer remote version.
        """
        cache = self._get_cache(source_id)
        existing = cache.files.get(path)
        local_content = existing.local_content if existing is not None else None
        cache.files[path] = CachedFile(
            path=path,
            content=base_content,
            integrity_token=integrity_token,
            cached_at=self._clock(),
            local_content=local_content,
        )

    def forget(self, source_id: str, path: str) -> None:
        self._get_cache(source_id).files.pop(path, None)

    def invalidate(self, source_id: str) -> None:
        """Drop the whole cache for a source, unpushed edits included."""
        dropped = self._caches.pop(source_id, None)
        if dropped is not None:
            dirty = sum(1 for entry in dropped.files.values() if entry.is_dirty)
            if dirty:
                logger.warning("Invalidated cache with unpushed edits. source_id=%s dirty=%d", source_id, dirty)

    def refresh(self, source_id: str, remote_listing: Iterable[RemoteEntry]) -> None:
        """
        Reconcile the cache with a fresh directory listing.

        Dirty entries are kept untouched. Every other listed path becomes a
        placeholder carrying the listed token and an epoch timestamp, so its
        content is fetched on the next read. Clean entries missing from the
        listing are dropped.
        """
        cache = self._get_cache(source_id)
        dirty = {path: entry for path, entry in cache.files.items() if entry.is_dirty}

        cache.files = dict(dirty)
        cache.last_refresh = self._clock()
        for item in remote_listing:
            if item.path in cache.files:
                continue
            cache.files[item.path] = CachedFile(
                path=item.path,
                content="",
                integrity_token=item.integrity_token,
                cached_at=EPOCH,
            )
        logger.debug(
            "Refreshed source cache. source_id=%s entries=%d dirty=%d",
            source_id,
            len(cache.files),
            len(dirty),
        )

    def restore_dirty(self, source_id: str, entries: Iterable[CachedFile]) -> None:
        """Re-install unpushed entries saved by a previous process."""
        cache = self._get_cache(source_id)
        for entry in entries:
            if not entry.is_dirty:
                continue
            cache.files[entry.path] = dataclasses.replace(entry)

    def last_refresh(self, source_id: str) -> datetime:
        return self._get_cache(source_id).last_refresh

    def source_ids(self) -> list[str]:
        return sorted(self._caches)
