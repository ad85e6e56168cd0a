"""
Process lifecycle management for DevZ.

This module spawns the server and client executables, tracks one handle for
each, and runs the escalating shutdown protocol that guarantees both are gone
within a bounded time after stop() is called.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from ..config.config import ShutdownConfig
from ..config.settings import Settings
from .errors import KillAttemptError, ProcessExitError, SpawnError
from .event_bus import (PROCESS_CRASHED, PROCESS_EXITED, PROCESS_READY, PROCESS_STARTED,
                        SHUTDOWN_COMPLETE, SHUTDOWN_STARTED, EventBus, ProcessEvent)
from .models import ProcessHandle, ProcessKind, ProcessState
from .reaper import ProcessReaper, PsutilReaper

_SETTINGS = Settings()

Callback = Callable[..., Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class EscalationPlan:
    """
    Deadlines for one kind of process, each measured from the previous step.
    """
    grace_period: float
    force_window: float
    cleanup_window: float
    kill_names: Tuple[str, ...]


def escalation_plans(config: ShutdownConfig) -> Dict[ProcessKind, EscalationPlan]:
    return {
        ProcessKind.SERVER: EscalationPlan(config.server_grace_period, config.server_force_window,
                                           config.server_cleanup_window, _SETTINGS.SERVER_KILL_NAMES),
        ProcessKind.CLIENT: EscalationPlan(config.client_grace_period, config.client_force_window,
                                           config.client_cleanup_window, _SETTINGS.CLIENT_KILL_NAMES),
    }


async def _maybe_await(result):
    if inspect.isawaitable(result):
        await result


class ProcessManager:
    """
    Spawns and stops the server and client processes.

    Every handle follows the ProcessState machine. stop() runs one escalation
    task per handle (terminate, kill, OS kill by pid and name, forced clear)
    plus a final sweep that kills anything left by executable name. Each
    step first checks that the handle has not already exited.
    """

    def __init__(self, shutdown_config: Optional[ShutdownConfig] = None,
                 reaper: Optional[ProcessReaper] = None,
                 event_bus: Optional[EventBus] = None,
                 on_spawn: Optional[Callback] = None,
                 on_stop: Optional[Callback] = None,
                 spawner: Optional[Callable] = None):
        """
        Initialize the process manager.

        Args:
            shutdown_config: Escalation timings
            reaper: OS-level killer used when signals are not enough
            event_bus: Optional event bus for notifications
            on_spawn: Called with the handle once a process is running
            on_stop: Called once per stop() to tear down log monitoring
            spawner: Coroutine function with the signature of
                asyncio.create_subprocess_exec
        """
        self.shutdown_config = shutdown_config or ShutdownConfig()
        self.reaper = reaper or PsutilReaper()
        self.event_bus = event_bus
        self.on_spawn = on_spawn
        self.on_stop = on_stop
        self._spawner = spawner or asyncio.create_subprocess_exec
        self._plans = escalation_plans(self.shutdown_config)
        self.logger = logging.getLogger(__name__)

        self.handles: Dict[ProcessKind, Optional[ProcessHandle]] = {
            ProcessKind.SERVER: None,
            ProcessKind.CLIENT: None,
        }
        self.is_shutting_down = False
        self._spawning: Set[ProcessKind] = set()
        self._escalations: Dict[ProcessKind, asyncio.Task] = {}
        self._handle_tasks: Dict[ProcessKind, List[asyncio.Task]] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        self._shutdown_done: Optional[asyncio.Future] = None

    def is_running(self, kind: ProcessKind) -> bool:
        return self.handles[ProcessKind(kind)] is not None

    def get_handle(self, kind: ProcessKind) -> Optional[ProcessHandle]:
        return self.handles[ProcessKind(kind)]

    # Start

    async def start(self, kind: ProcessKind, exe_path: Union[str, Path], args: Sequence[str],
                    profile_dir: Optional[Path] = None) -> ProcessHandle:
        """
        Launch an executable and track it.

        Returns once the OS has confirmed the process exists.

        Args:
            kind: Server or client
            exe_path: Executable to run
            args: Command line arguments
            profile_dir: Profile directory whose logs should be monitored

        Returns:
            The running handle

        Raises:
            SpawnError: If the executable cannot be launched
        """
        kind = ProcessKind(kind)
        if self.is_shutting_down:
            raise SpawnError(kind, f"Cannot start {kind.value} while processes are shutting down")
        if self.handles[kind] is not None:
            raise SpawnError(kind, f"{kind.label} is already running (pid {self.handles[kind].pid})")
        if kind in self._spawning:
            raise SpawnError(kind, f"{kind.label} is already starting")

        handle = ProcessHandle(kind=kind, executable=Path(exe_path), profile_dir=profile_dir)
        handle.transition(ProcessState.SPAWNING)
        self.logger.info(f"Running command: {exe_path} {' '.join(args)}")

        process = None
        self._spawning.add(kind)
        try:
            process = await self._spawner(
                str(exe_path), *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            handle.transition(ProcessState.CRASHED)
            message = f"Failed to start {kind.label}: {e}"
            self.logger.error(message)
            self._notify('error', message)
            raise SpawnError(kind, message) from e
        finally:
            self._spawning.discard(kind)
            if process is None:
                self._check_shutdown_complete()

        loop = asyncio.get_running_loop()
        handle.process = process
        handle.pid = process.pid
        handle.exited = loop.create_future()
        handle.transition(ProcessState.RUNNING)
        self.handles[kind] = handle

        tasks = [loop.create_task(self._watch_exit(handle))]
        for stream, is_stderr in ((process.stdout, False), (process.stderr, True)):
            if stream is not None:
                tasks.append(loop.create_task(self._read_output(handle, stream, is_stderr)))
        self._handle_tasks[kind] = tasks

        self.logger.info(f"{kind.label} started (pid {handle.pid})")
        self._publish(PROCESS_STARTED, handle)
        self._notify('info', f"{kind.label} started successfully")

        if self.is_shutting_down:
            # stop() began while the OS was still launching this one
            self.logger.info(f"{kind.label} started during shutdown, stopping it")
            self._escalations[kind] = loop.create_task(self._escalate(handle))
            return handle

        if self.on_spawn:
            try:
                await _maybe_await(self.on_spawn(handle))
            except Exception as e:
                self.logger.error(f"Error starting log monitoring for {kind.value}: {str(e)}")
        return handle

    async def _watch_exit(self, handle: ProcessHandle):
        returncode = await handle.process.wait()
        handle.last_exit_code = returncode

        if handle.state.is_stopping or self.is_shutting_down:
            self.logger.info(f"{handle.kind.label} exited (code: {returncode})")
            self._clear(handle, ProcessState.EXITED)
        elif returncode != 0:
            error = ProcessExitError(handle.kind, returncode)
            self.logger.warning(str(error))
            self._notify('error', f"{handle.kind.label} crashed or stopped unexpectedly (code: {returncode})")
            self._clear(handle, ProcessState.CRASHED)
        else:
            self.logger.info(f"{handle.kind.label} exited")
            self._clear(handle, ProcessState.EXITED)

    async def _read_output(self, handle: ProcessHandle, stream: asyncio.StreamReader, is_stderr: bool):
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                self.logger.debug(f"Skipping oversized output line from {handle.kind.value}: {e}")
                continue
            if not raw:
                break
            text = raw.decode('utf-8', errors='replace').rstrip()
            if not text:
                continue
            self.logger.debug(f"[{handle.kind.value}] {text}")

            if not handle.ready and any(marker in text for marker in _SETTINGS.READY_MARKERS):
                handle.ready = True
                self.logger.info(f"{handle.kind.label} reported ready")
                self._publish(PROCESS_READY, handle)

            if is_stderr:
                self._check_stderr(handle.kind, text)

    def _check_stderr(self, kind: ProcessKind, text: str):
        preview = text[:_SETTINGS.NOTIFICATION_PREVIEW_LENGTH]
        if kind is ProcessKind.SERVER and any(m in text for m in _SETTINGS.SERVER_ERROR_MARKERS):
            self._notify('error', f"Server Error: {preview}...")
        elif kind is ProcessKind.CLIENT and any(m in text for m in _SETTINGS.CLIENT_WARNING_MARKERS):
            self._notify('warning', f"Client Warning: {preview}...")

    # Stop

    async def stop(self):
        """
        Stop both processes and tear down log monitoring.

        Resolves when every handle has cleared or the fallback has fired. A
        call made while a shutdown is already running joins it.
        """
        if self.is_shutting_down and self._shutdown_done is not None:
            await asyncio.shield(self._shutdown_done)
            return

        loop = asyncio.get_running_loop()
        self.is_shutting_down = True
        self._shutdown_done = loop.create_future()
        self.logger.info("Stopping all processes")
        self._publish(SHUTDOWN_STARTED)

        for kind, handle in self.handles.items():
            if handle is not None:
                self._escalations[kind] = loop.create_task(self._escalate(handle))
        self._sweep_task = loop.create_task(self._final_sweep())

        if self.on_stop:
            try:
                await _maybe_await(self.on_stop())
            except Exception as e:
                self.logger.error(f"Error stopping log monitoring: {str(e)}")

        self._check_shutdown_complete()
        await asyncio.shield(self._shutdown_done)

    async def _escalate(self, handle: ProcessHandle):
        plan = self._plans[handle.kind]

        if not self._signal(handle, ProcessState.GRACEFUL_SIGNAL, 'terminate'):
            return
        if await self._wait_exit(handle, plan.grace_period):
            return

        if not self._signal(handle, ProcessState.FORCE_SIGNAL, 'kill'):
            return
        if await self._wait_exit(handle, plan.force_window):
            return

        if not handle.transition(ProcessState.OS_KILL):
            return
        self.logger.info(f"{handle.kind.label} did not exit, killing by pid and name")
        attempts = [(self.reaper.kill_by_pid, handle.pid)] if handle.pid is not None else []
        attempts.extend((self.reaper.kill_by_name, name) for name in plan.kill_names)
        await self._reap(attempts)
        if await self._wait_exit(handle, plan.cleanup_window):
            return

        message = f"{handle.kind.label} process cleanup forced after timeout"
        self.logger.warning(message)
        self._notify('warning', message)
        self._clear(handle, ProcessState.EXITED, forced=True)

    def _signal(self, handle: ProcessHandle, state: ProcessState, method: str) -> bool:
        if not handle.transition(state):
            return False
        try:
            getattr(handle.process, method)()
        except ProcessLookupError:
            pass  # already gone
        except OSError as e:
            self.logger.warning(str(KillAttemptError(f"{method} failed for {handle.kind.value}: {e}")))
        return True

    async def _wait_exit(self, handle: ProcessHandle, timeout: float) -> bool:
        if handle.exited.done():
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return handle.exited.done()
        try:
            await asyncio.wait_for(asyncio.shield(handle.exited), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _reap(self, attempts: List[Tuple[Callable, object]]):
        # One executor call per step so every attempt runs even if the
        # process exits part way through
        await asyncio.get_running_loop().run_in_executor(None, self._run_kills, attempts)

    def _run_kills(self, attempts: List[Tuple[Callable, object]]):
        for kill, target in attempts:
            try:
                kill(target)
            except KillAttemptError as e:
                self.logger.warning(f"Kill attempt failed: {e}")
            except OSError as e:
                self.logger.warning(f"Kill attempt for {target} failed: {e}")

    async def _final_sweep(self):
        await asyncio.sleep(self.shutdown_config.sweep_delay)
        if not self.is_shutting_down:
            return

        self.logger.warning("Using fallback method to kill remaining processes")
        self._notify('warning', "Using fallback method to kill remaining processes...")
        await self._reap([(self.reaper.kill_by_name, pattern) for pattern in _SETTINGS.SWEEP_NAME_PATTERNS])

        await asyncio.sleep(self.shutdown_config.sweep_clear_delay)
        if not self.is_shutting_down:
            return
        for handle in list(self.handles.values()):
            if handle is not None:
                self._clear(handle, ProcessState.EXITED, forced=True)
        self._check_shutdown_complete(force=True)

    # Bookkeeping

    def _clear(self, handle: ProcessHandle, state: ProcessState, forced: bool = False):
        if not handle.transition(state):
            return
        handle.forced = forced
        if handle.exited is not None and not handle.exited.done():
            handle.exited.set_result(handle.last_exit_code)
        if self.handles[handle.kind] is handle:
            self.handles[handle.kind] = None

        current = asyncio.current_task()
        escalation = self._escalations.pop(handle.kind, None)
        if escalation is not None and escalation is not current:
            escalation.cancel()
        tasks = self._handle_tasks.pop(handle.kind, [])
        if forced:
            for task in tasks:
                if task is not current:
                    task.cancel()

        self._publish(PROCESS_CRASHED if state is ProcessState.CRASHED else PROCESS_EXITED, handle)
        self._check_shutdown_complete()

    def _check_shutdown_complete(self, force: bool = False):
        if not self.is_shutting_down:
            return
        if not force and (self._spawning or any(handle is not None for handle in self.handles.values())):
            return

        self.is_shutting_down = False
        if self._sweep_task is not None and self._sweep_task is not asyncio.current_task():
            self._sweep_task.cancel()
        self._sweep_task = None
        if self._shutdown_done is not None and not self._shutdown_done.done():
            self._shutdown_done.set_result(None)
        self.logger.info("All processes stopped")
        self._publish(SHUTDOWN_COMPLETE)

    def _publish(self, event_type: str, handle: Optional[ProcessHandle] = None):
        if not self.event_bus:
            return
        data = None
        if handle is not None:
            data = {'kind': handle.kind, 'pid': handle.pid, 'state': handle.state,
                    'exit_code': handle.last_exit_code, 'forced': handle.forced}
        self.event_bus.publish(ProcessEvent(type=event_type, data=data, source='process_manager'))

    def _notify(self, level: str, message: str):
        if self.event_bus:
            self.event_bus.notify(level, message, source='process_manager')
