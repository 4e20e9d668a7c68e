import asyncio
import unittest

from taskflow.github.errors import RemoteUnavailableError
from taskflow.github.memory import InMemoryContentAdapter
from taskflow.github.models import GitHubSourceConfig, RemoteSource
from taskflow.sync.conflicts import merge, resolve_conflict
from taskflow.sync.errors import SyncInProgressError
from taskflow.sync.file_cache import FileCache
from taskflow.sync.models import SyncStage
from taskflow.sync.orchestrator import SyncOrchestrator
from taskflow.utils import git_blob_sha

SOURCE = RemoteSource(id="work", name="work", config=GitHubSourceConfig(owner="acme", repo="tasks"))


class ListingFailsAdapter(InMemoryContentAdapter):
    async def list_files(self, config):
        raise RemoteUnavailableError("network down")


class FetchFailsAfterAdapter(InMemoryContentAdapter):
    def __init__(self, files, failing_path):
        super().__init__(files)
        self.failing_path = failing_path

    async def get_file(self, config, path):
        if path == self.failing_path:
            raise RemoteUnavailableError("connection reset")
        return await super().get_file(config, path)


class VanishingAdapter(InMemoryContentAdapter):
    def __init__(self, files, vanishing_path):
        super().__init__(files)
        self.vanishing_path = vanishing_path

    async def list_files(self, config):
        listing = await super().list_files(config)
        self.remove_remote(self.vanishing_path)
        return listing


class WriteFailsAdapter(InMemoryContentAdapter):
    def __init__(self, files, failing_path):
        super().__init__(files)
        self.failing_path = failing_path

    async def put_file(self, config, path, content, message, expected_integrity_token=None):
        if path == self.failing_path:
            self.calls["put_file"] += 1
            raise RemoteUnavailableError("502 from upstream")
        return await super().put_file(config, path, content, message, expected_integrity_token)


class RacingAdapter(InMemoryContentAdapter):
    """Another client writes each file right before this client's write lands."""

    async def put_file(self, config, path, content, message, expected_integrity_token=None):
        self.set_remote(path, "someone else")
        return await super().put_file(config, path, content, message, expected_integrity_token)


class BrokenFetchAdapter(InMemoryContentAdapter):
    async def get_file(self, config, path):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")


class SlowListAdapter(InMemoryContentAdapter):
    def __init__(self, files):
        super().__init__(files)
        self.release = asyncio.Event()

    async def list_files(self, config):
        await self.release.wait()
        return await super().list_files(config)


def _make(remote):
    cache = FileCache(remote)
    return cache, SyncOrchestrator(remote, cache, commit_message_prefix="test sync")


class PullTests(unittest.IsolatedAsyncioTestCase):
    async def test_pull_fetches_every_clean_file(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "a", "sub/b.md": "b", "notes.txt": "x"})
        cache, orchestrator = _make(remote)

        result = await orchestrator.pull(SOURCE)

        self.assertTrue(result.success)
        self.assertEqual(result.pulled, ["a.md", "sub/b.md"])
        self.assertEqual(result.pushed, [])
        self.assertEqual(cache.peek("work", "sub/b.md").content, "b")
        self.assertEqual(orchestrator.stage("work"), SyncStage.DONE)

    async def test_pull_bypasses_ttl(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "v1"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        remote.set_remote("a.md", "v2")

        await orchestrator.pull(SOURCE)

        self.assertEqual(await cache.read_file(SOURCE, "a.md"), "v2")

    async def test_pull_skips_dirty_files(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "v1", "b.md": "b"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "local")
        remote.set_remote("a.md", "remote change")
        before = cache.peek("work", "a.md")

        result = await orchestrator.pull(SOURCE)

        self.assertEqual(result.pulled, ["b.md"])
        after = cache.peek("work", "a.md")
        self.assertEqual(after, before)
        self.assertEqual(await cache.read_file(SOURCE, "a.md"), "local")

    async def test_listing_failure_reports_error(self) -> None:
        cache, orchestrator = _make(ListingFailsAdapter({"a.md": "a"}))

        result = await orchestrator.pull(SOURCE)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "network down")
        self.assertEqual(result.pulled, [])
        self.assertEqual(orchestrator.stage("work"), SyncStage.FAILED)

    async def test_fetch_failure_reports_files_pulled_so_far(self) -> None:
        remote = FetchFailsAfterAdapter({"a.md": "a", "b.md": "b", "c.md": "c"}, failing_path="b.md")
        cache, orchestrator = _make(remote)

        result = await orchestrator.pull(SOURCE)

        self.assertFalse(result.success)
        self.assertEqual(result.pulled, ["a.md"])
        self.assertIn("b.md", result.error)

    async def test_unexpected_error_still_ends_in_failed_stage(self) -> None:
        remote = BrokenFetchAdapter({"a.md": "a"})
        cache, orchestrator = _make(remote)

        with self.assertRaises(UnicodeDecodeError):
            await orchestrator.pull(SOURCE)

        self.assertEqual(orchestrator.stage("work"), SyncStage.FAILED)
        self.assertTrue((await orchestrator.push(SOURCE)).success)

    async def test_file_deleted_between_listing_and_fetch_is_skipped(self) -> None:
        remote = VanishingAdapter({"a.md": "a", "b.md": "b"}, vanishing_path="b.md")
        cache, orchestrator = _make(remote)
        cache.refresh("work", await InMemoryContentAdapter({"b.md": "b"}).list_files(SOURCE.config))

        result = await orchestrator.pull(SOURCE)

        self.assertTrue(result.success)
        self.assertEqual(result.pulled, ["a.md"])
        self.assertIsNone(cache.peek("work", "b.md"))


class PushTests(unittest.IsolatedAsyncioTestCase):
    async def test_push_without_dirty_files_is_a_noop(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "a"})
        _, orchestrator = _make(remote)

        result = await orchestrator.push(SOURCE, "msg")

        self.assertTrue(result.success)
        self.assertEqual(result.pushed, [])
        self.assertEqual(sum(remote.calls.values()), 0)

    async def test_push_writes_updates_and_creates(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "v1"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "v2")
        cache.write_file_locally("work", "new.md", "fresh")

        result = await orchestrator.push(SOURCE, "update tasks")

        self.assertTrue(result.success, result.error)
        self.assertEqual(sorted(result.pushed), ["a.md", "new.md"])
        self.assertEqual(remote.remote_content("a.md"), "v2")
        self.assertEqual(remote.remote_content("new.md"), "fresh")
        self.assertEqual(remote.commit_messages, ["update tasks", "update tasks"])
        self.assertFalse(cache.has_unsaved_changes("work"))
        self.assertEqual(cache.peek("work", "new.md").integrity_token, git_blob_sha("fresh"))

    async def test_default_commit_message_uses_prefix(self) -> None:
        remote = InMemoryContentAdapter()
        cache, orchestrator = _make(remote)
        cache.write_file_locally("work", "new.md", "fresh")

        await orchestrator.push(SOURCE)

        self.assertTrue(remote.commit_messages[0].startswith("test sync: "))

    async def test_any_conflict_aborts_the_whole_push(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "a1", "b.md": "b1", "c.md": "c1"})
        cache, orchestrator = _make(remote)
        await orchestrator.pull(SOURCE)
        for path in ("a.md", "b.md", "c.md"):
            cache.write_file_locally("work", path, f"{path} local")
        cache.write_file_locally("work", "new.md", "new")
        remote.set_remote("b.md", "b2")

        result = await orchestrator.push(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual([c.path for c in result.conflicts], ["b.md"])
        self.assertEqual(result.error, "1 conflict(s) detected. Resolve before pushing.")
        self.assertEqual(remote.write_count, 0)
        self.assertEqual(len(cache.list_dirty_files("work")), 4)
        self.assertEqual(result.pushed, [])

    async def test_write_failure_keeps_remaining_files_dirty(self) -> None:
        remote = WriteFailsAdapter({}, failing_path="b.md")
        cache, orchestrator = _make(remote)
        cache.write_file_locally("work", "a.md", "a")
        cache.write_file_locally("work", "b.md", "b")
        cache.write_file_locally("work", "c.md", "c")

        result = await orchestrator.push(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual(result.pushed, ["a.md"])
        self.assertEqual([f.path for f in cache.list_dirty_files("work")], ["b.md", "c.md"])
        self.assertFalse(cache.peek("work", "a.md").is_dirty)

    async def test_remote_change_during_write_is_reported_as_conflict(self) -> None:
        remote = RacingAdapter({"a.md": "base"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "mine")

        result = await orchestrator.push(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual(result.pushed, [])
        self.assertEqual(len(result.conflicts), 1)
        conflict = result.conflicts[0]
        self.assertEqual(conflict.path, "a.md")
        self.assertEqual(conflict.base_content, "base")
        self.assertEqual(conflict.local_content, "mine")
        self.assertEqual(conflict.remote_content, "someone else")
        self.assertEqual(conflict.local_integrity_token, git_blob_sha("base"))
        self.assertEqual(conflict.remote_integrity_token, git_blob_sha("someone else"))
        self.assertEqual(result.error, "1 conflict(s) detected. Resolve before pushing.")
        self.assertTrue(cache.peek("work", "a.md").is_dirty)

    async def test_edit_during_write_stays_dirty(self) -> None:
        remote = InMemoryContentAdapter()
        cache, orchestrator = _make(remote)
        cache.write_file_locally("work", "a.md", "first")

        original_put = remote.put_file

        async def put_and_edit(config, path, content, message, expected_integrity_token=None):
            token = await original_put(config, path, content, message, expected_integrity_token)
            cache.write_file_locally("work", path, "second")
            return token

        remote.put_file = put_and_edit
        result = await orchestrator.push(SOURCE, "msg")

        self.assertTrue(result.success)
        entry = cache.peek("work", "a.md")
        self.assertEqual(entry.local_content, "second")
        self.assertEqual(entry.content, "first")
        self.assertEqual(entry.integrity_token, git_blob_sha("first"))


class ConflictScenarioTests(unittest.IsolatedAsyncioTestCase):
    async def test_conflict_then_resolve_remote_then_push(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "v1"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "v2")
        remote.set_remote("a.md", "v1-remote")

        result = await orchestrator.push(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual(len(result.conflicts), 1)
        conflict = result.conflicts[0]
        self.assertEqual(conflict.base_content, "v1")
        self.assertEqual(conflict.local_content, "v2")
        self.assertEqual(conflict.remote_content, "v1-remote")
        self.assertEqual(
            merge(conflict).conflict_markers,
            "<<<<<<< LOCAL\nv2\n=======\nv1-remote\n>>>>>>> REMOTE",
        )

        resolve_conflict(cache, SOURCE, conflict, "remote")
        second = await orchestrator.push(SOURCE, "msg")

        self.assertTrue(second.success, second.error)
        self.assertEqual(second.pushed, ["a.md"])
        self.assertFalse(cache.has_unsaved_changes("work"))
        self.assertEqual(remote.remote_content("a.md"), "v1-remote")

    async def test_auto_merge_resolution_is_pushed(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "title: A\nstatus: TODO"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "title: A\nstatus: DONE")
        remote.set_remote("a.md", "title: B\nstatus: TODO")

        conflicts = await orchestrator.check_conflicts(SOURCE)
        merged = merge(conflicts[0])
        resolve_conflict(cache, SOURCE, conflicts[0], "merged", merged.content)
        result = await orchestrator.push(SOURCE, "msg")

        self.assertTrue(result.success)
        self.assertEqual(remote.remote_content("a.md"), "title: B\nstatus: DONE")


class SyncTests(unittest.IsolatedAsyncioTestCase):
    async def test_sync_combines_pull_and_push(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "a", "b.md": "b"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "a2")

        result = await orchestrator.sync(SOURCE, "msg")

        self.assertTrue(result.success)
        self.assertEqual(result.pulled, ["b.md"])
        self.assertEqual(result.pushed, ["a.md"])
        self.assertEqual(remote.remote_content("a.md"), "a2")

    async def test_sync_returns_pull_failure_without_pushing(self) -> None:
        remote = ListingFailsAdapter()
        cache, orchestrator = _make(remote)
        cache.write_file_locally("work", "a.md", "a")

        result = await orchestrator.sync(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "network down")
        self.assertEqual(remote.write_count, 0)
        self.assertTrue(cache.has_unsaved_changes("work"))

    async def test_sync_reports_conflicts_from_push(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "v1"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")
        cache.write_file_locally("work", "a.md", "v2")
        remote.set_remote("a.md", "v3")

        result = await orchestrator.sync(SOURCE, "msg")

        self.assertFalse(result.success)
        self.assertEqual(result.pulled, [])
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.to_dict()["conflicts"][0]["remote_integrity_token"], git_blob_sha("v3"))

    async def test_concurrent_operation_on_same_source_is_rejected(self) -> None:
        remote = SlowListAdapter({"a.md": "a"})
        _, orchestrator = _make(remote)

        first = asyncio.create_task(orchestrator.sync(SOURCE, "msg"))
        await asyncio.sleep(0)
        with self.assertRaises(SyncInProgressError):
            await orchestrator.pull(SOURCE)
        self.assertEqual(orchestrator.stage("work"), SyncStage.PULLING)

        remote.release.set()
        self.assertTrue((await first).success)


class DeleteAndStatusTests(unittest.IsolatedAsyncioTestCase):
    async def test_delete_uses_cached_token(self) -> None:
        remote = InMemoryContentAdapter({"a.md": "a"})
        cache, orchestrator = _make(remote)
        await cache.read_file(SOURCE, "a.md")

        await orchestrator.delete_file(SOURCE, "a.md", "remove a")

        self.assertIsNone(remote.remote_content("a.md"))
        self.assertIsNone(cache.peek("work", "a.md"))
        self.assertEqual(remote.calls["get_file"], 1)

    async def test_delete_of_unpushed_file_only_forgets_it(self) -> None:
        remote = InMemoryContentAdapter()
        cache, orchestrator = _make(remote)
        cache.write_file_locally("work", "draft.md", "draft")

        await orchestrator.delete_file(SOURCE, "draft.md")

        self.assertIsNone(cache.peek("work", "draft.md"))
        self.assertEqual(remote.calls["delete_file"], 0)

    async def test_status_lists_dirty_paths(self) -> None:
        cache, orchestrator = _make(InMemoryContentAdapter())
        cache.write_file_locally("work", "b.md", "b")
        cache.write_file_locally("work", "a.md", "a")

        status = orchestrator.status(SOURCE)

        self.assertEqual(status["stage"], "idle")
        self.assertEqual(status["dirty"], ["a.md", "b.md"])
        self.assertTrue(status["has_unsaved_changes"])


if __name__ == "__main__":
    unittest.main()
