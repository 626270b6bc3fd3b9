"""
Markdown directory watcher: invalidates the cache and schedules builds.

Filesystem events come from ``watchfiles.awatch`` running as an asyncio task.
Only ``*.md`` files directly inside the store directory are considered, and
dot-files are ignored. Added or modified files are held back until their size
has stopped changing for the stability threshold so partial writes never
trigger a build.

Each qualifying event clears the cache and (re)schedules one dispatch after a
quiet window. A burst of events collapses into a single dispatch carrying the
last event of the burst.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from watchfiles import Change, awatch

from .cache import DocumentCache
from .configuration import CMSConfig
from .dispatcher import BuildDispatcher
from .models import ChangeEvent, ChangeType, StatusSnapshot
from .utils import is_markdown_file

logger = logging.getLogger(__name__)

_CHANGE_TYPE_MAP: Dict[Change, ChangeType] = {
    Change.added: ChangeType.ADD,
    Change.modified: ChangeType.CHANGE,
    Change.deleted: ChangeType.DELETE,
}


def markdown_filter(change: Change, path: str) -> bool:
    return is_markdown_file(Path(path).name)


class MarkdownWatcher:
    """
    Owns the cache, the debounce handle and in-flight dispatches for one store directory.

    ``start()`` and ``stop()`` must be awaited from the event loop that will
    run the watcher; the FastAPI lifespan does this for the server.
    """

    def __init__(
        self,
        directory: Path,
        dispatcher: BuildDispatcher,
        cache: Optional[DocumentCache] = None,
        debounce_seconds: float = 2.0,
        stability_threshold_ms: int = 1000,
        poll_interval_ms: int = 100,
    ) -> None:
        self.directory = directory
        self.dispatcher = dispatcher
        self.cache = cache if cache is not None else DocumentCache()
        self.debounce_seconds = debounce_seconds
        self.stability_threshold_ms = stability_threshold_ms
        self.poll_interval_ms = poll_interval_ms
        self._stop_event: Optional[asyncio.Event] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: CMSConfig, dispatcher: BuildDispatcher) -> MarkdownWatcher:
        return cls(
            directory=settings.markdown_path,
            dispatcher=dispatcher,
            debounce_seconds=settings.watcher.debounce_seconds,
            stability_threshold_ms=settings.watcher.stability_threshold_ms,
            poll_interval_ms=settings.watcher.poll_interval_ms,
        )

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def has_pending_dispatch(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_loop(), name="markdown-watcher")
        logger.info("Watching for markdown file changes in: %s", self.directory)

    async def stop(self) -> None:
        """Stop watching, drop any scheduled dispatch and wait for running ones."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._watch_task is not None:
            try:
                await asyncio.wait_for(self._watch_task, timeout=5.0)
            except asyncio.TimeoutError:
                self._watch_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._watch_task
            self._watch_task = None

        if self._pending is not None:
            self._pending.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending
            self._pending = None

        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until the scheduled dispatch (if any) has fired and finished."""
        if self._pending is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._pending
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def handle_change(self, event: ChangeEvent) -> None:
        """Invalidate the cache and restart the quiet window with ``event`` as the payload."""
        logger.info("Markdown file %s: %s", event.change_type.value, event.file_name)
        self.cache.invalidate()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.create_task(self._dispatch_after_quiet(event))

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            cache_last_updated=self.cache.last_updated,
            cache_last_invalidated=self.cache.last_invalidated,
            configured_webhooks=self.dispatcher.services,
            watching_directory=str(self.directory),
            cached_files=self.cache.size,
        )

    async def _watch_loop(self) -> None:
        try:
            async for changes in awatch(
                self.directory,
                watch_filter=markdown_filter,
                stop_event=self._stop_event,
                recursive=False,
            ):
                await self.process_changes(changes)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Markdown watcher stopped unexpectedly")

    async def process_changes(self, changes: Iterable[Tuple[Change, str]]) -> None:
        """Turn a raw watchfiles batch into change events, waiting out in-progress writes."""
        candidates: List[Tuple[ChangeType, Path]] = []
        # A batch is an unordered set, so within one batch "last" means last by path
        for change, raw_path in sorted(changes, key=lambda item: item[1]):
            path = Path(raw_path)
            if not is_markdown_file(path.name):
                continue
            candidates.append((_CHANGE_TYPE_MAP.get(change, ChangeType.CHANGE), path))

        settled = await asyncio.gather(
            *(self._settled(change_type, path) for change_type, path in candidates)
        )
        for (change_type, path), ready in zip(candidates, settled):
            if ready:
                self.handle_change(ChangeEvent(change_type=change_type, file_name=path.name))

    async def _settled(self, change_type: ChangeType, path: Path) -> bool:
        if change_type is ChangeType.DELETE:
            return True
        return await self._wait_until_stable(path)

    async def _wait_until_stable(self, path: Path) -> bool:
        """True once the file size is unchanged for the stability threshold; False if it disappears."""
        loop = asyncio.get_running_loop()
        threshold = self.stability_threshold_ms / 1000
        interval = max(self.poll_interval_ms, 1) / 1000
        try:
            last_size = path.stat().st_size
        except FileNotFoundError:
            return False

        stable_since = loop.time()
        while loop.time() - stable_since < threshold:
            await asyncio.sleep(interval)
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                return False
            if size != last_size:
                last_size = size
                stable_since = loop.time()
        return True

    async def _dispatch_after_quiet(self, event: ChangeEvent) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Past the quiet window the dispatch runs on its own task so later events cannot cancel it
        task = asyncio.create_task(self._run_dispatch(event))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_dispatch(self, event: ChangeEvent) -> None:
        try:
            await self.dispatcher.dispatch(event)
        except Exception:
            logger.exception("Build dispatch failed for %s %s", event.change_type.value, event.file_name)
