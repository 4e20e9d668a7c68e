from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable

from taskflow.sync.file_cache import FileCache
from taskflow.sync.models import CachedFile
from taskflow.utils import EPOCH, format_rfc3339, parse_rfc3339, utc_now

logger = logging.getLogger(__name__)

SchemaVersion = 1


def atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def _encode_entry(entry: CachedFile) -> dict:
    return {
        "path": entry.path,
        "content": entry.content,
        "integrity_token": entry.integrity_token,
        "cached_at": format_rfc3339(entry.cached_at),
        "local_content": entry.local_content,
    }


def _decode_entry(payload: dict) -> CachedFile:
    cached_at_raw = payload.get("cached_at")
    return CachedFile(
        path=payload["path"],
        content=payload.get("content", ""),
        integrity_token=payload.get("integrity_token"),
        cached_at=parse_rfc3339(cached_at_raw) if cached_at_raw else EPOCH,
        local_content=payload.get("local_content"),
    )


class DirtyStateStore:
    """
    Keeps unpushed edits on disk between runs.

    Only dirty entries are written; clean state is re-fetched from the remote.
    """

    def __init__(self, path: str):
        self._path = Path(path)

    def save(self, cache: FileCache, source_ids: Iterable[str]) -> None:
        sources: Dict[str, list[dict]] = {}
        for source_id in source_ids:
            dirty = cache.list_dirty_files(source_id)
            if dirty:
                sources[source_id] = [_encode_entry(entry) for entry in dirty]
        atomic_write_json(
            self._path,
            {
                "schema_version": SchemaVersion,
                "generated_at": format_rfc3339(utc_now()),
                "sources": sources,
            },
        )
        logger.debug("Dirty state saved. path=%s sources=%d", self._path, len(sources))

    def load(self, cache: FileCache) -> int:
        """Restore saved edits into `cache`. Returns the number of restored entries."""
        if not self._path.exists():
            return 0
        payload = json.loads(self._path.read_text(encoding="utf-8"))
        if int(payload.get("schema_version", SchemaVersion)) != SchemaVersion:
            logger.warning(
                "Dirty state schema mismatch, ignoring file. path=%s expected=%s actual=%s",
                self._path,
                SchemaVersion,
                payload.get("schema_version"),
            )
            return 0
        restored = 0
        for source_id, entries in payload.get("sources", {}).items():
            decoded = [_decode_entry(item) for item in entries]
            cache.restore_dirty(source_id, decoded)
            restored += sum(1 for entry in decoded if entry.is_dirty)
        if restored:
            logger.info("Restored unpushed edits. path=%s entries=%d", self._path, restored)
        return restored
