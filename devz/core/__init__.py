"""Core functionality module for DevZ."""

from .event_bus import EventBus
from .file_monitor import DirectoryWatcher
from .log_monitor import LogMonitor
from .process_manager import ProcessManager
from .session import DevSession
from .sinks import Sink, SinkMultiplexer

__all__ = ['EventBus', 'DirectoryWatcher', 'LogMonitor', 'ProcessManager', 'DevSession',
           'Sink', 'SinkMultiplexer']
