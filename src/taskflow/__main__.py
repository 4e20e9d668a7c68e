from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from taskflow.config import YamlConfigLoader
from taskflow.config.models import AppConfig, ConfigLoadRequest
from taskflow.github.client import GitHubContentAdapter
from taskflow.github.errors import NotFoundError
from taskflow.github.models import RemoteSource
from taskflow.logging import init_logging
from taskflow.sync.conflicts import merge, resolve_conflict
from taskflow.sync.file_cache import FileCache
from taskflow.sync.orchestrator import SyncOrchestrator
from taskflow.sync.persistence import DirtyStateStore
from taskflow.tasks.repository import RemoteTaskRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Runtime:
    config: AppConfig
    source: RemoteSource
    adapter: GitHubContentAdapter
    cache: FileCache
    orchestrator: SyncOrchestrator
    store: Optional[DirtyStateStore]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskflow", description="Sync markdown task files with GitHub")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    parser.add_argument("--source", default=None, help="Source id from the config (optional with one source)")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    subparsers.add_parser("validate", help="Check repository access and count task files")
    subparsers.add_parser("status", help="Show unpushed edits")
    subparsers.add_parser("tasks", help="List tasks of the source")
    subparsers.add_parser("pull", help="Fetch remote changes into the cache")

    for name, help_text in (("push", "Push local edits"), ("sync", "Pull, then push local edits")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-m", "--message", default=None, help="Commit message")

    edit_parser = subparsers.add_parser("edit", help="Stage a local edit of a task file")
    edit_parser.add_argument("path", help="Task file path relative to the source root")
    edit_parser.add_argument("--file", required=True, help="Local file holding the new content")

    delete_parser = subparsers.add_parser("delete", help="Delete a task file from the remote")
    delete_parser.add_argument("path")
    delete_parser.add_argument("-m", "--message", default=None, help="Commit message")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a push conflict for one file")
    resolve_parser.add_argument("path")
    resolve_parser.add_argument("--use", required=True, choices=["local", "remote", "merged"])
    resolve_parser.add_argument("--file", default=None, help="Merged content (only with --use merged)")

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _build_runtime(args: argparse.Namespace) -> _Runtime:
    config = await YamlConfigLoader().load(ConfigLoadRequest(yaml_path=args.config))
    init_logging(config.logging)
    source = config.get_source(args.source)

    adapter = GitHubContentAdapter(config.github)
    cache = FileCache(adapter, ttl_seconds=config.cache.ttl_seconds)
    orchestrator = SyncOrchestrator(adapter, cache, commit_message_prefix=config.sync.commit_message_prefix)
    store = DirtyStateStore(config.cache.dirty_state_path) if config.cache.dirty_state_path.strip() else None
    if store is not None:
        store.load(cache)
    return _Runtime(config=config, source=source, adapter=adapter, cache=cache, orchestrator=orchestrator, store=store)


async def _resolve(runtime: _Runtime, args: argparse.Namespace) -> int:
    conflicts = await runtime.orchestrator.check_conflicts(runtime.source)
    conflict = next((c for c in conflicts if c.path == args.path), None)
    if conflict is None:
        _print_json({"path": args.path, "resolved": False, "error": "No conflict for this path"})
        return 1

    merged_content: Optional[str] = None
    if args.use == "merged":
        if args.file:
            merged_content = Path(args.file).read_text(encoding="utf-8")
        else:
            result = merge(conflict)
            if not result.success:
                print(result.conflict_markers)
                logger.warning("Automatic merge left conflicts. path=%s", args.path)
                return 1
            merged_content = result.content

    resolve_conflict(runtime.cache, runtime.source, conflict, args.use, merged_content)
    _print_json({"path": args.path, "resolved": True, "resolution": args.use})
    return 0


async def _run_command(runtime: _Runtime, args: argparse.Namespace) -> int:
    source = runtime.source
    if args.command == "validate":
        result = await runtime.adapter.validate_connection(source.config)
        _print_json(
            {
                "valid": result.valid,
                "task_count": result.task_count,
                "error": result.error,
                "rate_limit_remaining": result.rate_limit.remaining if result.rate_limit else None,
            }
        )
        return 0 if result.valid else 1
    if args.command == "status":
        _print_json(runtime.orchestrator.status(source))
        return 0
    if args.command == "tasks":
        repository = RemoteTaskRepository(runtime.adapter, runtime.cache, runtime.orchestrator)
        tasks = await repository.list_tasks(source)
        _print_json(
            [
                {"path": t.file_path, "id": t.id, "title": t.title, "status": t.status, "priority": t.priority}
                for t in tasks
            ]
        )
        return 0
    if args.command in ("pull", "push", "sync"):
        if args.command == "pull":
            sync_result = await runtime.orchestrator.pull(source)
        elif args.command == "push":
            sync_result = await runtime.orchestrator.push(source, args.message)
        else:
            sync_result = await runtime.orchestrator.sync(source, args.message)
        _print_json({"action": args.command, **sync_result.to_dict()})
        return 0 if sync_result.success else 1
    if args.command == "edit":
        content = Path(args.file).read_text(encoding="utf-8")
        try:
            # Pins the remote version the edit is based on.
            await runtime.cache.read_file(source, args.path)
        except NotFoundError:
            pass
        runtime.cache.write_file_locally(source.id, args.path, content)
        _print_json(runtime.orchestrator.status(source))
        return 0
    if args.command == "delete":
        await runtime.orchestrator.delete_file(source, args.path, args.message)
        _print_json({"path": args.path, "deleted": True})
        return 0
    if args.command == "resolve":
        return await _resolve(runtime, args)
    raise ValueError(f"Unknown command: {args.command}")


async def _main_async(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    runtime = await _build_runtime(args)
    try:
        return await _run_command(runtime, args)
    finally:
        if runtime.store is not None:
            runtime.store.save(runtime.cache, runtime.cache.source_ids())


def main() -> None:
    try:
        code = asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
