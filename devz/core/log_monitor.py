"""
Log monitoring session for DevZ.

The LogMonitor owns the directory watchers for the server and client
profile directories and feeds every observed line to the sink multiplexer.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .event_bus import MONITORING_STARTED, MONITORING_STOPPED, SINK_SHOW, EventBus
from .file_monitor import DirectoryWatcher
from .models import LogLine, LogRole, MonitoredDirectory
from .sinks import SinkMultiplexer
from .tail import TailSource

PathLike = Union[str, Path]


class LogMonitor:
    """
    Starts and stops monitoring of the profile directories.
    """

    def __init__(self, multiplexer: SinkMultiplexer, source_factory: Callable[[], TailSource],
                 event_bus: Optional[EventBus] = None, watcher_factory: Callable = DirectoryWatcher):
        """
        Initialize the log monitor.

        Args:
            multiplexer: Destination for every observed line
            source_factory: Creates the TailSource used by each stream
            event_bus: Optional event bus for notifications
            watcher_factory: Builds a watcher for one directory
        """
        self.multiplexer = multiplexer
        self.source_factory = source_factory
        self.event_bus = event_bus
        self.watcher_factory = watcher_factory
        self.logger = logging.getLogger(__name__)

        self.watchers: Dict[LogRole, DirectoryWatcher] = {}
        self.active = False
        self.started_at: Optional[datetime] = None

    @property
    def directories(self) -> List[MonitoredDirectory]:
        return [watcher.directory for watcher in self.watchers.values()]

    async def start(self, server_dir: Optional[PathLike] = None, client_dir: Optional[PathLike] = None,
                    auto_show_combined: bool = True):
        """
        Begin a new monitoring session.

        Any running session is stopped first. Sinks are reset once and the
        session banner lists every directory being watched.

        Args:
            server_dir: Server profile directory
            client_dir: Client profile directory
            auto_show_combined: Ask the presentation layer to show the combined sink
        """
        if self.active:
            await self.stop()

        requested = [(LogRole.SERVER, server_dir), (LogRole.CLIENT, client_dir)]
        directories = [MonitoredDirectory(Path(path).resolve(), role)
                       for role, path in requested if path is not None]

        self._begin_session(directories)
        for directory in directories:
            await self._start_watcher(directory)

        if auto_show_combined and self.event_bus:
            self.event_bus.publish(SINK_SHOW, {'sink': self.multiplexer.combined.name}, 'log_monitor')

    async def watch(self, role: LogRole, directory: PathLike):
        """
        Add a directory to the active session, starting one if needed.

        Args:
            role: Role of the directory
            directory: Path to watch
        """
        monitored = MonitoredDirectory(Path(directory).resolve(), LogRole(role))
        if not self.active:
            await self.start(**{f"{monitored.role.value.lower()}_dir": monitored.path})
            return

        existing = self.watchers.get(monitored.role)
        if existing is not None:
            if existing.path == monitored.path:
                return
            await existing.stop()
            del self.watchers[monitored.role]

        self.multiplexer.combined.append(f"Watching: {monitored.path}")
        await self._start_watcher(monitored)

    def _begin_session(self, directories: List[MonitoredDirectory]):
        self.active = True
        self.started_at = datetime.now()
        self.multiplexer.reset_all([str(d.path) for d in directories], self.started_at)
        self.logger.info("Log monitoring started")
        if self.event_bus:
            self.event_bus.publish(MONITORING_STARTED,
                                   {'directories': [str(d.path) for d in directories]}, 'log_monitor')

    async def _start_watcher(self, directory: MonitoredDirectory):
        watcher = self.watcher_factory(directory, self.source_factory, self._on_line)
        self.watchers[directory.role] = watcher
        await watcher.start()

    def _on_line(self, line: LogLine):
        self.multiplexer.route(line)

    async def stop(self):
        """Stop every watcher and mark the sinks as stopped."""
        if not self.active:
            return
        self.active = False

        for role, watcher in list(self.watchers.items()):
            try:
                await watcher.stop()
            except Exception as e:
                self.logger.error(f"Error stopping watcher for {watcher.path}: {str(e)}")
        self.watchers.clear()

        self.multiplexer.stop_all()
        self.logger.info("Log monitoring stopped")
        if self.event_bus:
            self.event_bus.publish(MONITORING_STOPPED, None, 'log_monitor')
