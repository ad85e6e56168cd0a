"""
Tests for process lifecycle management in DevZ.

This module tests spawning, crash handling, output scanning and the
escalating shutdown protocol of the ProcessManager.
"""

import asyncio
import time
from pathlib import Path

import pytest

from devz.config.config import ShutdownConfig
from devz.core.errors import SpawnError
from devz.core.event_bus import (PROCESS_CRASHED, PROCESS_READY, PROCESS_STARTED,
                                 SHUTDOWN_COMPLETE)
from devz.core.models import ProcessKind, ProcessState
from devz.core.process_manager import ProcessManager, escalation_plans


def _record(event_bus, event_type):
    received = []
    event_bus.subscribe(event_type, received.append)
    return received


class TestStart:
    """Tests for ProcessManager.start."""

    @pytest.mark.asyncio
    async def test_missing_executable_raises_spawn_error(self, event_bus, notifications, fake_reaper):
        """A missing executable yields SpawnError and leaves the handle empty."""
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus)

        with pytest.raises(SpawnError) as exc_info:
            await manager.start(ProcessKind.SERVER, '/nonexistent/exe', ['-port=2302'])

        assert exc_info.value.kind is ProcessKind.SERVER
        assert manager.get_handle(ProcessKind.SERVER) is None
        assert not manager.is_running(ProcessKind.SERVER)
        assert any(level == 'error' for level, _ in notifications)

    @pytest.mark.asyncio
    async def test_start_spawns_detached_process(self, event_bus, fake_spawner, fake_reaper):
        """The process is spawned in its own session with piped output."""
        spawned = []
        started = _record(event_bus, PROCESS_STARTED)
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus,
                                 on_spawn=spawned.append, spawner=fake_spawner)

        handle = await manager.start(ProcessKind.CLIENT, Path('/games/DayZ_BE.exe'), ['-doLogs'],
                                     profile_dir=Path('/tmp/ClientProfile'))

        program, args, kwargs = fake_spawner.calls[0]
        assert program == str(Path('/games/DayZ_BE.exe'))
        assert args == ('-doLogs',)
        assert kwargs['start_new_session'] is True
        assert kwargs['stdin'] == asyncio.subprocess.DEVNULL
        assert kwargs['stdout'] == asyncio.subprocess.PIPE
        assert kwargs['stderr'] == asyncio.subprocess.PIPE

        assert handle.state is ProcessState.RUNNING
        assert handle.pid == fake_spawner.processes[0].pid
        assert manager.is_running(ProcessKind.CLIENT)
        assert spawned == [handle]
        assert started[0].data['kind'] is ProcessKind.CLIENT

        await manager.stop()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, fake_spawner, fake_reaper):
        """Starting a kind that is already running is rejected."""
        manager = ProcessManager(reaper=fake_reaper, spawner=fake_spawner)
        await manager.start(ProcessKind.SERVER, 'server.exe', [])

        with pytest.raises(SpawnError):
            await manager.start(ProcessKind.SERVER, 'server.exe', [])
        assert len(fake_spawner.calls) == 1

        await manager.stop()

    @pytest.mark.asyncio
    async def test_on_spawn_failure_does_not_fail_start(self, fake_spawner, fake_reaper):
        """Errors from the spawn callback are logged, not raised."""
        async def broken(handle):
            raise RuntimeError("monitoring unavailable")

        manager = ProcessManager(reaper=fake_reaper, on_spawn=broken, spawner=fake_spawner)
        handle = await manager.start(ProcessKind.SERVER, 'server.exe', [])

        assert handle.state is ProcessState.RUNNING
        await manager.stop()

    @pytest.mark.asyncio
    async def test_overlapping_starts_spawn_once(self, fake_spawner, fake_reaper):
        """A second start issued while the first is still spawning is rejected."""
        fake_spawner.delay = 0.05
        manager = ProcessManager(reaper=fake_reaper, spawner=fake_spawner)

        results = await asyncio.gather(
            manager.start(ProcessKind.SERVER, 'server.exe', []),
            manager.start(ProcessKind.SERVER, 'server.exe', []),
            return_exceptions=True,
        )

        handles = [result for result in results if not isinstance(result, Exception)]
        errors = [result for result in results if isinstance(result, SpawnError)]
        assert len(handles) == 1 and len(errors) == 1
        assert len(fake_spawner.processes) == 1
        assert manager.get_handle(ProcessKind.SERVER) is handles[0]

        await asyncio.wait_for(manager.stop(), 1.0)

        assert not manager.is_running(ProcessKind.SERVER)
        assert [name for name, _ in fake_spawner.processes[0].signals] == ['terminate']

    @pytest.mark.asyncio
    async def test_start_allowed_after_failed_spawn(self, fake_spawner, fake_reaper):
        """A failed spawn does not keep the kind reserved."""
        fake_spawner.error = FileNotFoundError("server.exe")
        manager = ProcessManager(reaper=fake_reaper, spawner=fake_spawner)
        with pytest.raises(SpawnError):
            await manager.start(ProcessKind.SERVER, 'server.exe', [])

        fake_spawner.error = None
        handle = await manager.start(ProcessKind.SERVER, 'server.exe', [])

        assert handle.state is ProcessState.RUNNING
        await manager.stop()


class TestOutput:
    """Tests for stdout/stderr scanning."""

    @pytest.mark.asyncio
    async def test_ready_marker_sets_ready(self, event_bus, fake_spawner, fake_reaper, wait_until):
        fake_spawner.stdout_lines = ("Loading mission", "Host identity created")
        ready = _record(event_bus, PROCESS_READY)
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus, spawner=fake_spawner)

        handle = await manager.start(ProcessKind.SERVER, 'server.exe', [])

        assert await wait_until(lambda: handle.ready)
        assert len(ready) == 1
        await manager.stop()

    @pytest.mark.asyncio
    async def test_server_stderr_error_notifies(self, event_bus, notifications, fake_spawner, fake_reaper,
                                                wait_until):
        fake_spawner.stderr_lines = ("ERROR: " + "x" * 200,)
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus, spawner=fake_spawner)

        await manager.start(ProcessKind.SERVER, 'server.exe', [])

        assert await wait_until(lambda: any(m.startswith("Server Error") for _, m in notifications))
        level, message = next(n for n in notifications if n[1].startswith("Server Error"))
        assert level == 'error'
        assert message == f"Server Error: {('ERROR: ' + 'x' * 200)[:100]}..."
        await manager.stop()

    @pytest.mark.asyncio
    async def test_client_connection_failure_warns(self, event_bus, notifications, fake_spawner,
                                                   fake_reaper, wait_until):
        fake_spawner.stderr_lines = ("Connection failed: timeout",)
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus, spawner=fake_spawner)

        await manager.start(ProcessKind.CLIENT, 'client.exe', [])

        assert await wait_until(lambda: ('warning', "Client Warning: Connection failed: timeout...")
                                in notifications)
        await manager.stop()


class TestExit:
    """Tests for processes that exit on their own."""

    @pytest.mark.asyncio
    async def test_crash_clears_handle(self, event_bus, notifications, fake_spawner, fake_reaper,
                                       wait_until):
        crashed = _record(event_bus, PROCESS_CRASHED)
        manager = ProcessManager(reaper=fake_reaper, event_bus=event_bus, spawner=fake_spawner)
        handle = await manager.start(ProcessKind.CLIENT, 'client.exe', [])

        fake_spawner.processes[0].finish(3)

        assert await wait_until(lambda: not manager.is_running(ProcessKind.CLIENT))
        assert handle.state is ProcessState.CRASHED
        assert handle.last_exit_code == 3
        assert crashed[0].data['exit_code'] == 3
        assert ('error', "Client crashed or stopped unexpectedly (code: 3)") in notifications

    @pytest.mark.asyncio
    async def test_restart_after_exit(self, fake_spawner, fake_reaper, wait_until):
        manager = ProcessManager(reaper=fake_reaper, spawner=fake_spawner)
        await manager.start(ProcessKind.SERVER, 'server.exe', [])
        fake_spawner.processes[0].finish(0)
        assert await wait_until(lambda: not manager.is_running(ProcessKind.SERVER))

        handle = await manager.start(ProcessKind.SERVER, 'server.exe', [])

        assert handle.state is ProcessState.RUNNING
        await manager.stop()


class TestStop:
    """Tests for the escalating shutdown."""

    @pytest.mark.asyncio
    async def test_stop_with_nothing_running(self, event_bus):
        completed = _record(event_bus, SHUTDOWN_COMPLETE)
        manager = ProcessManager(event_bus=event_bus)

        await asyncio.wait_for(manager.stop(), 1.0)

        assert not manager.is_shutting_down
        assert len(completed) == 1

    @pytest.mark.asyncio
    async def test_graceful_stop(self, fake_spawner, fake_reaper):
        """Processes that obey terminate are never killed."""
        stopped = []
        manager = ProcessManager(reaper=fake_reaper, on_stop=lambda: stopped.append(True),
                                 spawner=fake_spawner)
        server = await manager.start(ProcessKind.SERVER, 'server.exe', [])
        client = await manager.start(ProcessKind.CLIENT, 'client.exe', [])

        await asyncio.wait_for(manager.stop(), 1.0)

        assert not manager.is_running(ProcessKind.SERVER)
        assert not manager.is_running(ProcessKind.CLIENT)
        assert not manager.is_shutting_down
        assert server.state is ProcessState.EXITED and not server.forced
        assert client.state is ProcessState.EXITED and not client.forced
        assert stopped == [True]
        assert fake_reaper.calls == []
        for process in fake_spawner.processes:
            assert [name for name, _ in process.signals] == ['terminate']

    @pytest.mark.asyncio
    async def test_client_escalation_timing(self, fake_spawner, fake_reaper):
        """An unresponsive client is force killed before 2s and killed by name at or after 2s."""
        fake_spawner.exits_on = ()
        manager = ProcessManager(ShutdownConfig(), reaper=fake_reaper, spawner=fake_spawner)
        await manager.start(ProcessKind.CLIENT, 'DayZ_BE.exe', [])
        process = fake_spawner.processes[0]

        started = time.monotonic()
        await asyncio.wait_for(manager.stop(), 6.0)

        kill_at = process.signal_time('kill') - started
        by_name_at = fake_reaper.first('name')[2] - started
        assert process.signal_time('terminate') - started < 0.5
        assert 0.9 <= kill_at < 2.0
        assert by_name_at >= 1.99
        assert fake_reaper.first('pid')[1] == process.pid
        assert set(fake_reaper.names()) >= {'DayZ_BE.exe', 'DayZ_x64.exe'}
        assert not manager.is_running(ProcessKind.CLIENT)

    @pytest.mark.asyncio
    async def test_server_force_and_os_kill_together(self, fast_shutdown, fake_spawner, fake_reaper):
        """With no force window the server kill and OS kill happen at the same deadline."""
        fake_spawner.exits_on = ()
        manager = ProcessManager(fast_shutdown, reaper=fake_reaper, spawner=fake_spawner)
        await manager.start(ProcessKind.SERVER, 'DayZServer_x64.exe', [])
        process = fake_spawner.processes[0]

        started = time.monotonic()
        await asyncio.wait_for(manager.stop(), 2.0)

        kill_at = process.signal_time('kill') - started
        pid_kill_at = fake_reaper.first('pid')[2] - started
        assert kill_at >= fast_shutdown.server_grace_period - 0.01
        assert abs(pid_kill_at - kill_at) < 0.15
        assert 'DayZServer_x64.exe' in fake_reaper.names()

    @pytest.mark.asyncio
    async def test_forced_clear_after_cleanup_window(self, fast_shutdown, event_bus, notifications,
                                                     fake_spawner, fake_reaper):
        """A process that survives every kill is cleared anyway."""
        fake_spawner.exits_on = ()
        fake_reaper.effective = False
        manager = ProcessManager(fast_shutdown, reaper=fake_reaper, event_bus=event_bus,
                                 spawner=fake_spawner)
        handle = await manager.start(ProcessKind.CLIENT, 'DayZ_BE.exe', [])

        await asyncio.wait_for(manager.stop(), 1.0)

        assert handle.forced
        assert handle.state is ProcessState.EXITED
        assert not manager.is_running(ProcessKind.CLIENT)
        assert not manager.is_shutting_down
        assert ('warning', "Client process cleanup forced after timeout") in notifications

    @pytest.mark.asyncio
    async def test_final_sweep(self, event_bus, notifications, fake_spawner, fake_reaper):
        """The sweep kills by pattern and then clears whatever is left."""
        shutdown = ShutdownConfig(client_grace_period=0.05, client_force_window=0.05,
                                  client_cleanup_window=30.0, server_grace_period=0.05,
                                  server_force_window=0.0, server_cleanup_window=30.0,
                                  sweep_delay=0.3, sweep_clear_delay=0.1)
        fake_spawner.exits_on = ()
        fake_reaper.effective = False
        manager = ProcessManager(shutdown, reaper=fake_reaper, event_bus=event_bus, spawner=fake_spawner)
        server = await manager.start(ProcessKind.SERVER, 'DayZServer_x64.exe', [])
        client = await manager.start(ProcessKind.CLIENT, 'DayZ_BE.exe', [])

        started = time.monotonic()
        await asyncio.wait_for(manager.stop(), 2.0)
        elapsed = time.monotonic() - started

        assert elapsed >= 0.39
        assert {'DayZ*', 'DayZServer*'} <= set(fake_reaper.names())
        assert server.forced and client.forced
        assert not manager.is_running(ProcessKind.SERVER)
        assert not manager.is_running(ProcessKind.CLIENT)
        assert not manager.is_shutting_down
        assert ('warning', "Using fallback method to kill remaining processes...") in notifications

    @pytest.mark.asyncio
    async def test_second_stop_joins_first(self, fast_shutdown, event_bus, fake_spawner, fake_reaper):
        completed = _record(event_bus, SHUTDOWN_COMPLETE)
        fake_spawner.exits_on = ('kill',)
        manager = ProcessManager(fast_shutdown, reaper=fake_reaper, event_bus=event_bus,
                                 spawner=fake_spawner)
        await manager.start(ProcessKind.CLIENT, 'DayZ_BE.exe', [])

        await asyncio.wait_for(asyncio.gather(manager.stop(), manager.stop()), 2.0)

        assert len(completed) == 1
        assert len(fake_spawner.processes[0].signals) == 2

    @pytest.mark.asyncio
    async def test_start_during_shutdown_raises(self, fast_shutdown, fake_spawner, fake_reaper):
        fake_spawner.exits_on = ('kill',)
        manager = ProcessManager(fast_shutdown, reaper=fake_reaper, spawner=fake_spawner)
        await manager.start(ProcessKind.CLIENT, 'DayZ_BE.exe', [])

        stopping = asyncio.ensure_future(manager.stop())
        await asyncio.sleep(0.01)
        assert manager.is_shutting_down

        with pytest.raises(SpawnError):
            await manager.start(ProcessKind.SERVER, 'DayZServer_x64.exe', [])
        await stopping

    @pytest.mark.asyncio
    async def test_stop_while_spawning_stops_new_process(self, fake_spawner, fake_reaper):
        """stop() waits for a launch in progress and then stops that process too."""
        fake_spawner.delay = 0.1
        spawned = []
        manager = ProcessManager(reaper=fake_reaper, on_spawn=spawned.append, spawner=fake_spawner)

        starting = asyncio.ensure_future(manager.start(ProcessKind.SERVER, 'server.exe', []))
        await asyncio.sleep(0.02)
        stopping = asyncio.ensure_future(manager.stop())
        handle = await starting
        await asyncio.wait_for(stopping, 1.0)

        assert not manager.is_running(ProcessKind.SERVER)
        assert not manager.is_shutting_down
        assert handle.state is ProcessState.EXITED
        assert [name for name, _ in fake_spawner.processes[0].signals] == ['terminate']
        assert spawned == []


class TestEscalationPlans:
    """Tests for the per-kind escalation deadlines."""

    def test_default_plans(self):
        plans = escalation_plans(ShutdownConfig())

        client = plans[ProcessKind.CLIENT]
        server = plans[ProcessKind.SERVER]
        assert (client.grace_period, client.force_window, client.cleanup_window) == (1.0, 1.0, 3.0)
        assert (server.grace_period, server.force_window, server.cleanup_window) == (10.0, 0.0, 3.0)
        assert server.kill_names == ('DayZServer_x64.exe',)
