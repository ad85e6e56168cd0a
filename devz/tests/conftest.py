"""
Pytest configuration for DevZ tests.

This file contains fixtures and fakes for the test suite. Lifecycle tests
use fake processes and a recording reaper so escalation timing can be
asserted without a real game; monitoring tests use real tail helpers and
watchdog observers against temporary directories.
"""

import asyncio
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from unittest.mock import Mock

import pytest

from devz.config.config import Config, ShutdownConfig
from devz.core.event_bus import NOTIFICATION, EventBus
from devz.core.models import LogRole, MonitoredDirectory
from devz.core.reaper import ProcessReaper


class FakeProcess:
    """
    Stands in for asyncio.subprocess.Process.

    exits_on names the signals ('terminate', 'kill') the process obeys.
    """

    def __init__(self, pid: int, exits_on: Tuple[str, ...] = ('terminate', 'kill'),
                 stdout_lines: Tuple[str, ...] = (), stderr_lines: Tuple[str, ...] = ()):
        self.pid = pid
        self.exits_on = exits_on
        self.returncode: Optional[int] = None
        self.signals: List[Tuple[str, float]] = []
        self.loop = asyncio.get_running_loop()
        self._exited = asyncio.Event()
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(line.encode() + b'\n')
        for line in stderr_lines:
            self.stderr.feed_data(line.encode() + b'\n')

    def terminate(self):
        self.signals.append(('terminate', time.monotonic()))
        if 'terminate' in self.exits_on:
            self.finish(0)

    def kill(self):
        self.signals.append(('kill', time.monotonic()))
        if 'kill' in self.exits_on:
            self.finish(-9)

    def finish(self, returncode: int):
        if self.returncode is not None:
            return
        self.returncode = returncode
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def signal_time(self, name: str) -> Optional[float]:
        for signal_name, at in self.signals:
            if signal_name == name:
                return at
        return None


class FakeSpawner:
    """Replacement for asyncio.create_subprocess_exec that hands out FakeProcesses."""

    def __init__(self):
        self.calls = []
        self.processes: List[FakeProcess] = []
        self.exits_on: Tuple[str, ...] = ('terminate', 'kill')
        self.stdout_lines: Tuple[str, ...] = ()
        self.stderr_lines: Tuple[str, ...] = ()
        self.error: Optional[OSError] = None
        self.delay = 0.0

    async def __call__(self, program, *args, **kwargs):
        self.calls.append((program, args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        process = FakeProcess(1000 + len(self.processes), self.exits_on,
                              self.stdout_lines, self.stderr_lines)
        self.processes.append(process)
        return process

    def find(self, pid: int) -> Optional[FakeProcess]:
        for process in self.processes:
            if process.pid == pid:
                return process
        return None


class FakeReaper(ProcessReaper):
    """
    Records kill requests with their time.

    When effective, kill_by_pid ends the matching fake process shortly
    afterwards, as the OS would. Calls arrive on an executor thread, so the
    process is finished on its own loop.
    """

    reap_delay = 0.05

    def __init__(self, spawner: FakeSpawner):
        self.spawner = spawner
        self.effective = True
        self.calls: List[Tuple[str, object, float]] = []

    def kill_by_pid(self, pid: int) -> bool:
        self.calls.append(('pid', pid, time.monotonic()))
        process = self.spawner.find(pid)
        if process is None or process.returncode is not None or not self.effective:
            return False
        process.loop.call_soon_threadsafe(process.loop.call_later, self.reap_delay, process.finish, -9)
        return True

    def kill_by_name(self, pattern: str) -> int:
        self.calls.append(('name', pattern, time.monotonic()))
        return 0

    def first(self, kind: str) -> Optional[Tuple[str, object, float]]:
        for call in self.calls:
            if call[0] == kind:
                return call
        return None

    def names(self) -> List[str]:
        return [target for kind, target, _ in self.calls if kind == 'name']


async def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds or times out."""
    return _wait_until


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample configuration rooted in a temporary project."""
    config = Config()
    config.paths.project_dir = str(tmp_path / "project")
    config.paths.server_dir = str(tmp_path / "DayZServer")
    config.paths.client_dir = str(tmp_path / "DayZ")
    config.paths.workshop_dir = str(tmp_path / "workshop")
    config.shutdown.client_start_delay = 0.05
    return config


@pytest.fixture
def fast_shutdown():
    """Escalation timings scaled down for tests."""
    return ShutdownConfig(
        client_grace_period=0.1,
        client_force_window=0.1,
        client_cleanup_window=0.2,
        server_grace_period=0.2,
        server_force_window=0.0,
        server_cleanup_window=0.2,
        sweep_delay=1.0,
        sweep_clear_delay=0.2,
        client_start_delay=0.05,
    )


@pytest.fixture
def event_bus():
    """Create an event bus instance."""
    return EventBus()


@pytest.fixture
def notifications(event_bus):
    """Collect (level, message) for every notification published."""
    received = []
    event_bus.subscribe(NOTIFICATION, lambda event: received.append(
        (event.data['level'], event.data['message'])))
    return received


@pytest.fixture
def fake_spawner():
    return FakeSpawner()


@pytest.fixture
def fake_reaper(fake_spawner):
    return FakeReaper(fake_spawner)


@pytest.fixture
def mock_observer_factory():
    """Observer factory whose observers never deliver events."""
    return lambda: Mock()


@pytest.fixture
def server_dir(tmp_path) -> Path:
    path = tmp_path / "ServerProfile"
    path.mkdir()
    return path


@pytest.fixture
def client_dir(tmp_path) -> Path:
    path = tmp_path / "ClientProfile"
    path.mkdir()
    return path


@pytest.fixture
def server_directory(server_dir) -> MonitoredDirectory:
    return MonitoredDirectory(server_dir.resolve(), LogRole.SERVER)
