from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from taskflow.github.interfaces import RemoteContentAdapter
from taskflow.github.models import RemoteSource
from taskflow.sync.file_cache import FileCache
from taskflow.sync.orchestrator import SyncOrchestrator
from taskflow.tasks.codec import generate_task, parse_task, update_frontmatter
from taskflow.tasks.models import Task
from taskflow.utils import format_rfc3339, utc_now

logger = logging.getLogger(__name__)


class RemoteTaskRepository:
    """
    Task CRUD for a remote-backed source.

    Creates and updates only touch the cache; they reach the remote on the next
    push or sync. Deletes go to the remote immediately.
    """

    def __init__(self, adapter: RemoteContentAdapter, cache: FileCache, orchestrator: SyncOrchestrator):
        self._adapter = adapter
        self._cache = cache
        self._orchestrator = orchestrator

    async def list_tasks(self, source: RemoteSource) -> list[Task]:
        listing = await self._adapter.list_files(source.config)
        self._cache.refresh(source.id, listing)

        paths = {entry.path for entry in listing}
        paths.update(entry.path for entry in self._cache.list_dirty_files(source.id))

        tasks: list[Task] = []
        for path in sorted(paths):
            raw = await self._cache.read_file(source, path)
            tasks.append(parse_task(raw, path))
        return tasks

    async def get_task(self, source: RemoteSource, path: str) -> Task:
        raw = await self._cache.read_file(source, path)
        return parse_task(raw, path)

    def create_task(
        self,
        source: RemoteSource,
        title: str,
        *,
        directory: str = "",
        fields: Optional[Mapping[str, Any]] = None,
    ) -> Task:
        now = utc_now()
        task_id = f"task-{int(now.timestamp() * 1000)}"
        path = f"{directory.strip('/')}/{task_id}.md" if directory.strip("/") else f"{task_id}.md"
        if self._cache.peek(source.id, path) is not None:
            raise ValueError(f"Task file already exists: {path}")

        task = Task(id=task_id, title=title, created_at=format_rfc3339(now), updated_at=format_rfc3339(now))
        for key, value in (fields or {}).items():
            if not hasattr(task, key) or key in ("id", "file_path", "raw_content"):
                raise ValueError(f"Unknown task field: {key}")
            setattr(task, key, value)

        raw = generate_task(task)
        self._cache.write_file_locally(source.id, path, raw)
        logger.info("Task created locally. source_id=%s path=%s", source.id, path)
        return parse_task(raw, path)

    async def update_task(self, source: RemoteSource, path: str, updates: Mapping[str, Any]) -> Task:
        raw = await self._cache.read_file(source, path)
        updated = update_frontmatter(raw, updates)
        self._cache.write_file_locally(source.id, path, updated)
        return parse_task(updated, path)

    async def delete_task(self, source: RemoteSource, path: str, commit_message: Optional[str] = None) -> None:
        await self._orchestrator.delete_file(source, path, commit_message)
