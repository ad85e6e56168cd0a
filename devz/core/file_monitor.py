"""
File monitoring module for DevZ.

This module discovers log files in a profile directory, attaches a tail
stream to each, and keeps the set of streams in step with the directory as
files are created, deleted and renamed.
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler
import logging

from ..config.settings import Settings
from .classifier import classify
from .errors import TailSpawnError, WatchError
from .models import LogLine, MonitoredDirectory
from .tail import TailSource, TailStream

_CLOSE_TIMEOUT = Settings().TAIL_CLOSE_TIMEOUT


class LogDirectoryHandler(FileSystemEventHandler):
    """
    Event handler for log directory changes.
    """

    def __init__(self, callback: Callable[[str, str, Optional[str]], None]):
        """
        Initialize the file handler.

        Args:
            callback: Function to call with (event_type, src_path, dest_path)
        """
        super().__init__()
        self.callback = callback
        self.logger = logging.getLogger(__name__)

    def on_created(self, event):
        """Handle file creation events."""
        if not event.is_directory:
            self._handle_event('created', str(event.src_path))

    def on_deleted(self, event):
        """Handle file deletion events."""
        if not event.is_directory:
            self._handle_event('deleted', str(event.src_path))

    def on_moved(self, event):
        """Handle file move events."""
        if not event.is_directory:
            dest_path = getattr(event, 'dest_path', None)
            self._handle_event('moved', str(event.src_path), str(dest_path) if dest_path else None)

    def _handle_event(self, event_type: str, file_path: str, dest_path: Optional[str] = None):
        """
        Handle a file system event.

        Args:
            event_type: Type of event (created, deleted, moved)
            file_path: Path to the file that changed
            dest_path: New path for moved files
        """
        try:
            self.callback(event_type, file_path, dest_path)
        except Exception as e:
            self.logger.error(f"Error in file event callback: {str(e)}")


class DirectoryWatcher:
    """
    Keeps one tail stream attached to every log file in a directory.

    All bookkeeping happens on the event loop that called start(); watchdog
    callbacks are re-posted to that loop in the order they arrive.
    """

    def __init__(self, directory: MonitoredDirectory, source_factory: Callable[[], TailSource],
                 on_line: Callable[[LogLine], None], observer_factory: Callable = Observer):
        """
        Initialize the directory watcher.

        Args:
            directory: Directory and role to watch
            source_factory: Creates a fresh TailSource for each stream
            on_line: Called with every line from every stream
            observer_factory: Creates the watchdog observer
        """
        self.directory = directory
        self.source_factory = source_factory
        self.on_line = on_line
        self.observer_factory = observer_factory
        self.logger = logging.getLogger(__name__)

        self.streams: Dict[Path, TailStream] = {}
        self._pending: Set[asyncio.Task] = set()
        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False

    @property
    def path(self) -> Path:
        return self.directory.path

    async def start(self):
        """Attach to existing log files, then watch for changes."""
        if self.running:
            self.logger.warning(f"Already watching {self.path}")
            return

        self._loop = asyncio.get_running_loop()
        self.running = True

        attaches = [self.attach(path) for path in self._enumerate()]
        self._install_watch()

        started = [task for task in attaches if task is not None]
        if started:
            await asyncio.gather(*started)
        self.logger.info(f"Watching {self.path} ({self.directory.role.value}): {len(self.streams)} log file(s)")

    def _enumerate(self) -> List[Path]:
        """List matching files; an unreadable directory yields nothing."""
        try:
            with os.scandir(self.path) as entries:
                names = [entry.name for entry in entries if entry.is_file()]
        except OSError as e:
            self.logger.debug(str(WatchError(f"Cannot list {self.path}: {e}")))
            return []
        return sorted(self.path / name for name in names
                      if classify(name, self.directory.role) is not None)

    def _install_watch(self):
        handler = LogDirectoryHandler(self._on_fs_event)
        observer = self.observer_factory()
        try:
            observer.schedule(handler, str(self.path), recursive=False)
            observer.start()
        except OSError as e:
            self.logger.warning(str(WatchError(f"Cannot watch {self.path}: {e}")))
            return
        self._observer = observer

    def _on_fs_event(self, event_type: str, src_path: str, dest_path: Optional[str]):
        # Runs on the observer thread
        if not self.running or self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.handle_event, event_type, src_path, dest_path)

    def handle_event(self, event_type: str, src_path: str, dest_path: Optional[str] = None):
        """
        Apply one file system event to the stream registry.

        Args:
            event_type: created, deleted or moved
            src_path: Affected path
            dest_path: New path for moved files
        """
        if not self.running:
            return
        src = Path(src_path)
        if event_type == 'created':
            # A file created during the session is new in full, so read it from the top
            self.attach(src, start_offset=0)
        elif event_type == 'deleted':
            self.detach(src)
        elif event_type == 'moved':
            self.detach(src)
            if src.exists():
                # Recreated under the old name, so all of it is new
                self.attach(src, start_offset=0)
            if dest_path:
                dest = Path(dest_path)
                if dest.parent == self.path:
                    self.attach(dest)

    def attach(self, path: Path, start_offset: Optional[int] = None) -> Optional[asyncio.Task]:
        """
        Start tailing a file unless it is already tracked or not a log file.

        Args:
            path: File to tail
            start_offset: Where to start reading; the current size if None

        Returns:
            The task starting the stream, or None if nothing was attached
        """
        path = Path(path)
        if path in self.streams:
            return None
        classification = classify(path.name, self.directory.role)
        if classification is None:
            return None

        stream = TailStream(path, classification, self.directory, self.source_factory(),
                            self.on_line, start_offset=start_offset)
        self.streams[path] = stream
        return self._track(self._start_stream(stream))

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _start_stream(self, stream: TailStream):
        try:
            await stream.start()
        except TailSpawnError as e:
            self.logger.warning(str(e))
            if self.streams.get(stream.file_path) is stream:
                del self.streams[stream.file_path]
            return
        if not stream.is_detached:
            self.logger.info(f"Tailing {stream.file_path.name} as {stream.classification.label}")

    def detach(self, path: Path):
        """Stop tailing a file and kill its helper."""
        stream = self.streams.pop(Path(path), None)
        if stream is None:
            return
        stream.detach()
        self._track(self._close_stream(stream))
        self.logger.info(f"Stopped tailing {stream.file_path.name}")

    async def _close_stream(self, stream: TailStream):
        try:
            await asyncio.wait_for(stream.wait_closed(), _CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning(f"Tail helper for {stream.file_path.name} did not exit in time")

    async def stop(self):
        """Close the directory watch and detach every stream."""
        if not self.running:
            return
        self.running = False

        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, observer.join, 5)

        for path in list(self.streams):
            self.detach(path)

        # Wait for in-flight attaches and for every helper to exit
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self.logger.info(f"Stopped watching {self.path}")

    def is_tailing(self, path: Path) -> bool:
        """
        Check if a log file is being tailed.

        Args:
            path: Path to check

        Returns:
            True if log file is being tailed, False otherwise
        """
        return Path(path) in self.streams
