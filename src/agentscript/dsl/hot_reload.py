"""
Hot-reloading agent file parser.

Parses ``.agent`` files through a modification-time checked cache and
watches files or directories with watchdog. Observer threads hand events
to the event loop; each path gets its own bounded queue and debounce
worker so a burst of writes produces a single re-parse.
"""

import asyncio
import fnmatch
import inspect
import os
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config import HotReloadConfig
from .cache import AgentParseCache, CacheEntry, content_hash
from .parser import AgentParser
from .types import AgentAST, Dialect, ValidationResult


FileCallback = Callable[["FileParseResult", str], Any]
DirectoryCallback = Callable[[str, "FileParseResult | None", str], Any]


@dataclass
class FileParseResult:
    path: str
    ast: AgentAST | None
    validation: ValidationResult
    from_cache: bool = False
    content_hash: str | None = None
    dialect: Dialect | None = None

    @property
    def valid(self) -> bool:
        return self.ast is not None and self.validation.valid


@dataclass
class _DirectoryWatch:
    directory: str
    callback: DirectoryCallback
    pattern: str
    recursive: bool

    def matches(self, path: str) -> bool:
        parent = os.path.dirname(path)
        if self.recursive:
            try:
                inside = os.path.commonpath([self.directory, path]) == self.directory
            except ValueError:
                return False
        else:
            inside = parent == self.directory
        return inside and fnmatch.fnmatch(os.path.basename(path), self.pattern)


class _AgentFileHandler(FileSystemEventHandler):
    """Watchdog handler forwarding file events to the event loop thread."""

    def __init__(self, reloader: "HotReloadParser", loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._reloader = reloader
        self._loop = loop

    def _forward(self, kind: str, path: Any) -> None:
        path = os.path.abspath(os.fsdecode(path))
        self._loop.call_soon_threadsafe(self._reloader._on_event, kind, path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("add", event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("change", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("remove", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("remove", event.src_path)
            self._forward("add", event.dest_path)


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


class HotReloadParser:
    """
    Cached agent file parsing with file and directory watching.

    Watch methods must be called from inside a running event loop; that
    loop receives the watchdog events and runs the callbacks.
    """

    def __init__(self, config: HotReloadConfig | None = None, parser: AgentParser | None = None):
        self.config = config or HotReloadConfig()
        self.parser = parser or AgentParser()
        self.cache = AgentParseCache(self.config.cache_size)

        self._file_callbacks: dict[str, list[FileCallback]] = {}
        self._directory_watches: list[_DirectoryWatch] = []
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._pending: set[asyncio.Future] = set()

        self._observer: Observer | None = None
        self._scheduled: dict[tuple[str, bool], Any] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    # parsing

    def parse_content(self, text: str, path: str = "<string>") -> FileParseResult:
        parsed = self.parser.parse(text)
        return FileParseResult(path, parsed.ast, parsed.validation, False, content_hash(text), parsed.dialect)

    async def parse_file(self, path: str) -> FileParseResult:
        """
        Parse an agent file, serving it from cache while its mtime is unchanged.

        Args:
            path: File path

        Returns:
            FileParseResult; unreadable files yield an error diagnostic
        """
        path = os.path.abspath(path)
        try:
            stat = await asyncio.to_thread(os.stat, path)
        except OSError as e:
            return self._unreadable(path, e)

        if self.config.enable_caching:
            entry = self.cache.get(path, stat.st_mtime_ns)
            if entry is not None:
                logger.debug(f"Cache hit for {path}")
                return FileParseResult(path, entry.ast, entry.validation, True, entry.content_hash, entry.dialect)

        try:
            text = await asyncio.to_thread(_read_text, path)
        except (OSError, UnicodeDecodeError) as e:
            return self._unreadable(path, e)

        parsed = await asyncio.to_thread(self.parser.parse, text)
        digest = content_hash(text)
        if self.config.enable_caching:
            self.cache.put(CacheEntry(
                path=path,
                content_hash=digest,
                ast=parsed.ast,
                validation=parsed.validation,
                dialect=parsed.dialect,
                last_modified=stat.st_mtime_ns,
                size=stat.st_size,
            ))
        logger.debug(f"Parsed {path} ({len(parsed.validation.errors)} errors)")
        return FileParseResult(path, parsed.ast, parsed.validation, False, digest, parsed.dialect)

    @staticmethod
    def _unreadable(path: str, error: Exception) -> FileParseResult:
        result = ValidationResult()
        result.add_error(f"Cannot read agent file: {error}", path)
        logger.warning(f"Cannot read agent file {path}: {error}")
        return FileParseResult(path, None, result)

    async def parse_files(self, paths: Iterable[str], concurrency: int | None = None) -> list[FileParseResult]:
        """Parse many files, at most ``concurrency`` at a time, preserving order."""
        paths = list(paths)
        size = concurrency or self.config.batch_concurrency
        results: list[FileParseResult] = []
        for start in range(0, len(paths), size):
            batch = paths[start:start + size]
            results.extend(await asyncio.gather(*(self.parse_file(p) for p in batch)))
        return results

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    # watching

    def watch_file(self, path: str, callback: FileCallback) -> Callable[[], None]:
        """
        Call ``callback(result, path)`` after every debounced change to ``path``.

        Returns:
            Function that removes this subscription
        """
        path = os.path.abspath(path)
        self._file_callbacks.setdefault(path, []).append(callback)
        self._schedule(os.path.dirname(path), recursive=False)
        logger.info(f"Watching agent file {path}")
        return lambda: self.unwatch_file(path, callback)

    def unwatch_file(self, path: str, callback: FileCallback | None = None) -> None:
        path = os.path.abspath(path)
        callbacks = self._file_callbacks.get(path, [])
        if callback is None:
            callbacks.clear()
        elif callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            self._file_callbacks.pop(path, None)
            self._unschedule(os.path.dirname(path), recursive=False)
            if not self._is_watched(path):
                self._stop_worker(path)

    def watch_directory(
        self,
        directory: str,
        callback: DirectoryCallback,
        pattern: str | None = None,
        recursive: bool = True,
    ) -> Callable[[], None]:
        """
        Call ``callback(event, result, path)`` for agent files under
        ``directory``; ``event`` is ``add``, ``change`` or ``remove``
        (``result`` is None for removals).

        Returns:
            Function that removes this watch
        """
        directory = os.path.abspath(directory)
        watch = _DirectoryWatch(directory, callback, pattern or self.config.pattern, recursive)
        self._directory_watches.append(watch)
        self._schedule(directory, recursive)
        logger.info(f"Watching directory {directory} for '{watch.pattern}'")

        def unsubscribe() -> None:
            if watch in self._directory_watches:
                self._directory_watches.remove(watch)
                self._unschedule(directory, recursive)
                for path in list(self._workers):
                    if not self._is_watched(path):
                        self._stop_worker(path)

        return unsubscribe

    def notify_change(self, path: str) -> None:
        """Report a change to ``path`` as if the watcher had seen it."""
        self._on_event("change", os.path.abspath(path))

    def _schedule(self, directory: str, recursive: bool) -> None:
        self._loop = asyncio.get_running_loop()
        key = (directory, recursive)
        if key in self._scheduled:
            watch, count = self._scheduled[key]
            self._scheduled[key] = (watch, count + 1)
            return
        if self._observer is None:
            self._observer = Observer()
            self._observer.start()
        handler = _AgentFileHandler(self, self._loop)
        watch = self._observer.schedule(handler, directory, recursive=recursive)
        self._scheduled[key] = (watch, 1)

    def _unschedule(self, directory: str, recursive: bool) -> None:
        key = (directory, recursive)
        if key not in self._scheduled:
            return
        watch, count = self._scheduled[key]
        if count > 1:
            self._scheduled[key] = (watch, count - 1)
            return
        del self._scheduled[key]
        if self._observer is not None:
            self._observer.unschedule(watch)

    def _is_watched(self, path: str) -> bool:
        return path in self._file_callbacks or any(w.matches(path) for w in self._directory_watches)

    def _on_event(self, kind: str, path: str) -> None:
        """Runs on the loop thread for every watchdog event."""
        if not self._is_watched(path):
            return

        if kind == "remove":
            self.cache.invalidate(path)
            self._stop_worker(path)
            task = asyncio.ensure_future(self._notify_removed(path))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return

        queue = self._queues.get(path)
        if queue is None:
            queue = asyncio.Queue(maxsize=self.config.queue_size)
            self._queues[path] = queue
            self._workers[path] = asyncio.ensure_future(self._debounce_worker(path, queue))
        try:
            queue.put_nowait(kind)
        except asyncio.QueueFull:
            logger.debug(f"Change queue full for {path}, event coalesced")

    async def _debounce_worker(self, path: str, queue: asyncio.Queue) -> None:
        delay = self.config.debounce_ms / 1000.0
        while True:
            kinds = {await queue.get()}
            while True:
                try:
                    kinds.add(await asyncio.wait_for(queue.get(), timeout=delay))
                except asyncio.TimeoutError:
                    break
            if not os.path.exists(path):
                continue
            await self._reload(path, "add" if "add" in kinds else "change")
            if self._queues.get(path) is not queue:
                return

    def _stop_worker(self, path: str) -> None:
        """Drop the debounce worker and queue of a path nobody watches any more."""
        self._queues.pop(path, None)
        task = self._workers.pop(path, None)
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _reload(self, path: str, kind: str) -> None:
        self.cache.invalidate(path)
        result = await self.parse_file(path)
        logger.info(f"Reloaded {path}: {'valid' if result.valid else f'{len(result.validation.errors)} errors'}")

        for callback in list(self._file_callbacks.get(path, ())):
            await self._invoke(callback, result, path)
        for watch in list(self._directory_watches):
            if watch.matches(path):
                await self._invoke(watch.callback, kind, result, path)

    async def _notify_removed(self, path: str) -> None:
        logger.info(f"Agent file removed: {path}")
        removed = ValidationResult()
        removed.add_error("Agent file was removed", path)
        for callback in list(self._file_callbacks.get(path, ())):
            await self._invoke(callback, FileParseResult(path, None, removed), path)
        for watch in list(self._directory_watches):
            if watch.matches(path):
                await self._invoke(watch.callback, "remove", None, path)

    @staticmethod
    async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Hot reload callback failed: {e}")

    async def close(self) -> None:
        """Stop the observer and all debounce workers."""
        for task in self._workers.values():
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._file_callbacks.clear()
        self._directory_watches.clear()
        self._scheduled.clear()

        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join, 5)
            self._observer = None
        logger.debug("Hot reload parser closed")
