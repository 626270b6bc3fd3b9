"""
Tests for the markdown watcher: filtering, write stability, cache invalidation and debounce.
"""

import asyncio
from unittest.mock import patch

import pytest
from watchfiles import Change

from markdown_cms.configuration import load_settings
from markdown_cms.models import ChangeEvent, ChangeType
from markdown_cms.watcher import MarkdownWatcher, markdown_filter


class RecordingDispatcher:
    """Dispatcher stand-in that records the events it receives."""

    def __init__(self, services=None):
        self.events = []
        self.services = services or []

    async def dispatch(self, event):
        self.events.append(event)


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def watcher(markdown_dir, recorder):
    return MarkdownWatcher(
        markdown_dir,
        recorder,
        debounce_seconds=0.05,
        stability_threshold_ms=0,
        poll_interval_ms=5,
    )


class TestFilter:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/data/post.md", True),
            ("/data/.post.md", False),
            ("/data/post.md.swp", False),
            ("/data/image.png", False),
        ],
    )
    def test_markdown_filter(self, path, expected):
        assert markdown_filter(Change.modified, path) is expected


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_dispatch_with_last_event(self, watcher, recorder):
        for index in range(5):
            watcher.handle_change(ChangeEvent(change_type=ChangeType.CHANGE, file_name=f"post-{index}.md"))
        watcher.handle_change(ChangeEvent(change_type=ChangeType.DELETE, file_name="gone.md"))

        await watcher.wait_idle()

        assert recorder.events == [ChangeEvent(change_type=ChangeType.DELETE, file_name="gone.md")]

    @pytest.mark.asyncio
    async def test_separate_bursts_dispatch_separately(self, watcher, recorder):
        watcher.handle_change(ChangeEvent(change_type=ChangeType.ADD, file_name="a.md"))
        await watcher.wait_idle()
        watcher.handle_change(ChangeEvent(change_type=ChangeType.CHANGE, file_name="b.md"))
        await watcher.wait_idle()

        assert [event.file_name for event in recorder.events] == ["a.md", "b.md"]

    @pytest.mark.asyncio
    async def test_nothing_dispatched_before_quiet_window(self, markdown_dir, recorder):
        watcher = MarkdownWatcher(markdown_dir, recorder, debounce_seconds=10)
        watcher.handle_change(ChangeEvent(change_type=ChangeType.ADD, file_name="a.md"))
        await asyncio.sleep(0.01)

        assert watcher.has_pending_dispatch
        assert recorder.events == []

        await watcher.stop()
        assert not watcher.has_pending_dispatch
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_dispatch_errors_are_logged_not_raised(self, markdown_dir, caplog):
        class Exploding(RecordingDispatcher):
            async def dispatch(self, event):
                raise RuntimeError("webhook exploded")

        watcher = MarkdownWatcher(markdown_dir, Exploding(), debounce_seconds=0.01)
        watcher.handle_change(ChangeEvent(change_type=ChangeType.ADD, file_name="a.md"))

        await watcher.wait_idle()

        assert "Build dispatch failed" in caplog.text


class TestCacheInvalidation:
    @pytest.mark.asyncio
    async def test_change_resets_cache_timestamps(self, watcher):
        assert watcher.snapshot().cache_last_invalidated is None

        watcher.handle_change(ChangeEvent(change_type=ChangeType.CHANGE, file_name="post.md"))
        first = watcher.snapshot()
        assert first.cache_last_updated is None
        assert first.cache_last_invalidated is not None

        await asyncio.sleep(0.01)
        watcher.handle_change(ChangeEvent(change_type=ChangeType.CHANGE, file_name="post.md"))
        assert watcher.snapshot().cache_last_invalidated >= first.cache_last_invalidated

        await watcher.stop()

    def test_snapshot_reports_services_and_directory(self, markdown_dir):
        watcher = MarkdownWatcher(markdown_dir, RecordingDispatcher(services=["netlify", "custom"]))
        snapshot = watcher.snapshot()
        assert snapshot.configured_webhooks == ["netlify", "custom"]
        assert snapshot.watching_directory == str(markdown_dir)
        assert snapshot.cached_files == 0


class TestProcessChanges:
    @pytest.mark.asyncio
    async def test_batch_is_filtered_and_mapped(self, watcher, recorder, markdown_dir):
        post = markdown_dir / "post.md"
        post.write_text("---\ntitle: Post\n---\n\nBody", encoding="utf-8")
        (markdown_dir / "notes.txt").write_text("ignored", encoding="utf-8")
        (markdown_dir / ".hidden.md").write_text("ignored", encoding="utf-8")

        await watcher.process_changes(
            {
                (Change.added, str(post)),
                (Change.added, str(markdown_dir / "notes.txt")),
                (Change.modified, str(markdown_dir / ".hidden.md")),
            }
        )
        await watcher.wait_idle()

        assert recorder.events == [ChangeEvent(change_type=ChangeType.ADD, file_name="post.md")]

    @pytest.mark.asyncio
    async def test_deleted_files_skip_stability_check(self, watcher, recorder, markdown_dir):
        await watcher.process_changes({(Change.deleted, str(markdown_dir / "old.md"))})
        await watcher.wait_idle()

        assert recorder.events == [ChangeEvent(change_type=ChangeType.DELETE, file_name="old.md")]

    @pytest.mark.asyncio
    async def test_vanished_file_is_dropped(self, watcher, recorder, markdown_dir):
        await watcher.process_changes({(Change.added, str(markdown_dir / "never-written.md"))})

        assert not watcher.has_pending_dispatch
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_growing_file_waits_for_stable_size(self, markdown_dir, recorder):
        watcher = MarkdownWatcher(markdown_dir, recorder, stability_threshold_ms=100, poll_interval_ms=10)
        path = markdown_dir / "growing.md"
        path.write_text("partial", encoding="utf-8")
        loop = asyncio.get_running_loop()

        async def keep_writing():
            for _ in range(3):
                await asyncio.sleep(0.04)
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(" more")

        started = loop.time()
        writer = asyncio.create_task(keep_writing())
        assert await watcher._wait_until_stable(path) is True
        await writer

        # Three appends 40ms apart push the quiet period past the last one
        assert loop.time() - started >= 0.2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_watch_loop_feeds_events(self, watcher, recorder, markdown_dir):
        post = markdown_dir / "post.md"
        post.write_text("---\ntitle: Post\n---\n\nBody", encoding="utf-8")

        async def _fake_awatch(*_args, **_kwargs):
            yield {(Change.modified, str(post))}

        with patch("markdown_cms.watcher.awatch", _fake_awatch):
            await watcher.start()
            await asyncio.sleep(0.02)
            await watcher.wait_idle()
            await watcher.stop()

        assert recorder.events == [ChangeEvent(change_type=ChangeType.CHANGE, file_name="post.md")]
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_real_watcher_starts_and_stops(self, watcher):
        await watcher.start()
        assert watcher.is_running
        await watcher.start()
        await watcher.stop()
        assert not watcher.is_running

    def test_from_settings(self, markdown_dir, recorder):
        settings = load_settings(
            overrides={"markdown_dir": str(markdown_dir), "watcher.debounce_seconds": 0.5},
            environ={},
        )
        watcher = MarkdownWatcher.from_settings(settings, recorder)
        assert watcher.directory == markdown_dir.resolve()
        assert watcher.debounce_seconds == 0.5
        assert watcher.stability_threshold_ms == 1000
