"""
Main application entry point for DevZ.

This module provides the run functions behind each CLI command. Each one
loads configuration, sets up logging, drives a DevSession on an asyncio
loop and reports what happens to the console through rich.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config.config import Config, ConfigError
from .config.settings import Settings
from .core.classifier import classify
from .core.errors import SpawnError
from .core.event_bus import (LOG_LINE, NOTIFICATION, PROCESS_EXITED, PROCESS_READY,
                             EventBus, ProcessEvent)
from .core.models import LogRole
from .core.session import DevSession
from .utils.log_setup import setup_logging

_SETTINGS = Settings()

_LEVEL_STYLES = {
    'info': 'cyan',
    'warning': 'yellow',
    'error': 'bold red',
}


class ConsoleReporter:
    """
    Prints routed log lines and notifications to a rich Console.
    """

    def __init__(self, event_bus: EventBus, console: Optional[Console] = None):
        self.console = console or Console()
        event_bus.subscribe(LOG_LINE, self.on_log_line)
        event_bus.subscribe(NOTIFICATION, self.on_notification)
        event_bus.subscribe_to_type(ProcessEvent, self.on_process_event)

    def on_log_line(self, event):
        self.console.print(Text(event.data['line']))

    def on_notification(self, event):
        level = event.data.get('level', 'info')
        self.console.print(Text(event.data['message'], style=_LEVEL_STYLES.get(level, '')))

    def on_process_event(self, event):
        data = event.data or {}
        kind = data.get('kind')
        if kind is None:
            return
        if event.type == PROCESS_READY:
            self.console.print(Text(f"{kind.label} is ready", style='green'))
        elif event.type == PROCESS_EXITED:
            forced = " (forced)" if data.get('forced') else ""
            self.console.print(Text(f"{kind.label} stopped{forced}", style='dim'))


def _load(config_path: Optional[Path]) -> Config:
    if not config_path:
        default_path = Path(_SETTINGS.DEFAULT_CONFIG_PATH)
        if default_path.exists():
            config_path = default_path
    config = Config.load(config_path)
    setup_logging(config.logging.level, Path(config.logging.file) if config.logging.file else None)
    return config


def _install_interrupt(stop_requested: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            # Windows: asyncio.run turns Ctrl-C into cancellation instead
            return


async def _wait_for_stop(stop_requested: asyncio.Event, session: Optional[DevSession] = None,
                         poll_interval: float = 0.5):
    """Wait for Ctrl-C, or for every managed process to go away."""
    while not stop_requested.is_set():
        if session is not None and not (session.server_running or session.client_running):
            return
        try:
            await asyncio.wait_for(stop_requested.wait(), poll_interval)
        except asyncio.TimeoutError:
            pass


async def _run_processes(config: Config, server: bool, client: bool, console: Console) -> int:
    session = DevSession(config)
    ConsoleReporter(session.event_bus, console)
    stop_requested = asyncio.Event()
    _install_interrupt(stop_requested)

    try:
        if server and client:
            await session.start_server_and_client()
        elif server:
            await session.start_server_process()
        else:
            await session.start_client_process()
        await _wait_for_stop(stop_requested, session)
    except SpawnError as e:
        console.print(Text(str(e), style='bold red'))
        return 1
    finally:
        if session.server_running or session.client_running or session.is_shutting_down:
            console.print(Text("Stopping all processes...", style='yellow'))
            await session.stop_all_processes()
        else:
            await session.stop_log_monitoring()
    return 0


def run_processes(config_path: Optional[Path] = None, server: bool = True, client: bool = True) -> int:
    """
    Start the server and/or client and stream their logs until interrupted.

    Args:
        config_path: Path to configuration file
        server: Whether to start the dedicated server
        client: Whether to start the game client

    Returns:
        Exit code
    """
    console = Console()
    try:
        config = _load(config_path)
        return asyncio.run(_run_processes(config, server, client, console))
    except ConfigError as e:
        console.print(Text(f"Configuration error: {e}", style='bold red'))
        return 1
    except KeyboardInterrupt:
        return 130


async def _run_watch(config: Config, server_dir: Optional[Path], client_dir: Optional[Path],
                     console: Console) -> int:
    session = DevSession(config)
    ConsoleReporter(session.event_bus, console)
    stop_requested = asyncio.Event()
    _install_interrupt(stop_requested)

    if server_dir is None and client_dir is None:
        server_dir = config.server_profile_dir
        client_dir = config.client_profile_dir

    try:
        await session.start_log_monitoring(server_dir, client_dir)
        for line in session.multiplexer.combined.lines:
            console.print(Text(line, style='bold'))
        await _wait_for_stop(stop_requested)
    finally:
        await session.stop_log_monitoring()
    return 0


def run_watch(config_path: Optional[Path] = None, server_dir: Optional[Path] = None,
              client_dir: Optional[Path] = None) -> int:
    """
    Tail the log files of one or both profile directories without starting anything.

    Args:
        config_path: Path to configuration file
        server_dir: Server profile directory, defaults to the configured one
        client_dir: Client profile directory, defaults to the configured one

    Returns:
        Exit code
    """
    console = Console()
    try:
        config = _load(config_path)
        return asyncio.run(_run_watch(config, server_dir, client_dir, console))
    except ConfigError as e:
        console.print(Text(f"Configuration error: {e}", style='bold red'))
        return 1
    except KeyboardInterrupt:
        return 130


def run_classify(filename: str, role: str = LogRole.SERVER.value) -> int:
    """
    Show how a log filename would be classified.

    Returns:
        0 if the file would be tailed, 1 otherwise
    """
    console = Console()
    classification = classify(filename, LogRole(role.upper()))
    if classification is None:
        console.print(f"{filename}: not a log file")
        return 1

    table = Table(show_header=False, box=None)
    table.add_row("File", filename)
    table.add_row("Category", classification.category.name)
    table.add_row("Label", f"{classification.icon} {classification.label}")
    table.add_row("Sink", classification.category.label
                  if classification.category.has_sink else "combined only")
    console.print(table)
    return 0


def run_config_commands(config_path: Optional[Path] = None, show: bool = False,
                        validate_config: bool = False, init_path: Optional[Path] = None) -> int:
    """
    Run configuration management commands.

    Args:
        config_path: Path to configuration file
        show: Print the effective configuration
        validate_config: Validate the configuration
        init_path: Write a default configuration file here

    Returns:
        Exit code
    """
    console = Console()

    if init_path:
        if init_path.exists():
            console.print(f"Configuration file already exists: {init_path}", style='red')
            return 1
        Config().save(init_path)
        console.print(f"Created default configuration: {init_path}")
        return 0

    try:
        config = _load(config_path)
    except ConfigError as e:
        console.print(Text(f"Configuration error: {e}", style='bold red'))
        return 1

    if validate_config:
        errors = config.validate()
        if errors:
            for error in errors:
                console.print(Text(f"  - {error}", style='red'))
            console.print("Configuration validation failed", style='bold red')
            return 1
        console.print("Configuration is valid", style='green')

    if show or not validate_config:
        overrides = config.get_env_overrides()
        table = Table(title="Configuration")
        table.add_column("Option")
        table.add_column("Value")
        for section, options in config.to_dict().items():
            for key, value in options.items():
                name = f"{section}.{key}"
                suffix = " (env)" if name in overrides else ""
                table.add_row(name, f"{value}{suffix}")
        console.print(table)

    return 0


def main() -> None:
    """Main entry point for the application."""
    # Direct execution starts both processes with the default configuration
    exit_code = run_processes()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
