"""
The DevZ session object.

One DevSession is created when the tool starts and handed to whatever
presents it. It owns the process manager, the log monitor and the sinks, and
exposes the operations and state the presentation layer uses.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from ..config.config import Config
from ..utils.file_utils import FileUtils
from .event_bus import EventBus
from .launch import client_args, server_args
from .log_monitor import LogMonitor
from .models import ProcessHandle, ProcessKind
from .process_manager import ProcessManager
from .reaper import ProcessReaper
from .sinks import Sink, SinkMultiplexer
from .tail import FollowTailSource, PollingTailSource, TailSource

PathLike = Union[str, Path]


def tail_source_factory(config: Config) -> Callable[[], TailSource]:
    """Pick the tail backend named in the monitor configuration."""
    if config.monitor.tail_backend == 'poll':
        return lambda: PollingTailSource(poll_interval=config.monitor.poll_interval)
    return lambda: FollowTailSource(command=config.monitor.tail_command)


class DevSession:
    """
    Explicit session state for one run of the tool.
    """

    def __init__(self, config: Config, event_bus: Optional[EventBus] = None,
                 reaper: Optional[ProcessReaper] = None,
                 source_factory: Optional[Callable[[], TailSource]] = None,
                 spawner: Optional[Callable] = None):
        """
        Initialize the session.

        Args:
            config: Application configuration
            event_bus: Event bus shared with the presentation layer
            reaper: OS-level process killer
            source_factory: Creates TailSources; chosen from config if None
            spawner: Replacement for asyncio.create_subprocess_exec
        """
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

        self.multiplexer = SinkMultiplexer(self.event_bus)
        self.log_monitor = LogMonitor(self.multiplexer, source_factory or tail_source_factory(config),
                                      self.event_bus)
        self.processes = ProcessManager(config.shutdown, reaper=reaper, event_bus=self.event_bus,
                                        on_spawn=self._on_spawn, on_stop=self.stop_log_monitoring,
                                        spawner=spawner)

    # State read by the presentation layer

    @property
    def is_shutting_down(self) -> bool:
        return self.processes.is_shutting_down

    @property
    def server_running(self) -> bool:
        return self.processes.is_running(ProcessKind.SERVER)

    @property
    def client_running(self) -> bool:
        return self.processes.is_running(ProcessKind.CLIENT)

    @property
    def sinks(self) -> Dict[str, Sink]:
        return self.multiplexer.sinks

    # Operations

    async def start_server_process(self) -> ProcessHandle:
        """
        Prepare the server profile and start the dedicated server.

        Raises:
            SpawnError: If the server cannot be launched
        """
        profile_dir = self.config.server_profile_dir
        FileUtils.ensure_directory_exists(profile_dir)
        FileUtils.ensure_directory_exists(self.config.server_storage_dir)
        if self.config.monitor.clear_old_logs:
            FileUtils.clear_old_logs(profile_dir)

        return await self.processes.start(ProcessKind.SERVER, self.config.server_executable,
                                          server_args(self.config), profile_dir)

    async def start_client_process(self) -> ProcessHandle:
        """
        Prepare the client profile and start the game client.

        Raises:
            SpawnError: If the client cannot be launched
        """
        profile_dir = self.config.client_profile_dir
        FileUtils.ensure_directory_exists(profile_dir)
        if self.config.monitor.clear_old_logs:
            FileUtils.clear_old_logs(profile_dir)

        return await self.processes.start(ProcessKind.CLIENT, self.config.client_executable,
                                          client_args(self.config), profile_dir)

    async def start_server_and_client(self):
        """Start the server, then the client once the server has had time to come up."""
        await self.start_server_process()
        await asyncio.sleep(self.config.shutdown.client_start_delay)
        if self.server_running and not self.is_shutting_down:
            await self.start_client_process()

    async def stop_all_processes(self):
        await self.processes.stop()

    async def start_log_monitoring(self, server_dir: Optional[PathLike] = None,
                                   client_dir: Optional[PathLike] = None,
                                   auto_show_combined: bool = True):
        await self.log_monitor.start(server_dir, client_dir, auto_show_combined)

    async def stop_log_monitoring(self):
        await self.log_monitor.stop()

    async def _on_spawn(self, handle: ProcessHandle):
        if handle.profile_dir is not None:
            await self.log_monitor.watch(handle.kind.role, handle.profile_dir)
