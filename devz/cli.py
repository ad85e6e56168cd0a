"""
Command Line Interface for DevZ.

This module provides a CLI for starting the DayZ server and client with
their logs streamed to the console, watching profile directories, and
inspecting configuration.
"""

import click
import sys
from pathlib import Path
from typing import Optional
import os

from .main import run_processes, run_watch, run_classify, run_config_commands
from .config.settings import Settings

_SETTINGS = Settings()


def _set_verbosity(verbose: int) -> None:
    if verbose == 1:
        os.environ['DEVZ_LOG_LEVEL'] = 'INFO'
    elif verbose >= 2:
        os.environ['DEVZ_LOG_LEVEL'] = 'DEBUG'


@click.group(help="DevZ - run a DayZ server and client and follow their logs.")
@click.option('--config', '-c', type=click.Path(exists=True, path_type=Path),
              help='Path to configuration file')
@click.option('--verbose', '-V', count=True, help='Increase verbosity (use -VV for debug)')
@click.version_option(_SETTINGS.APP_VERSION, '--version', '-v', prog_name=_SETTINGS.APP_NAME,
                      message='%(prog)s v%(version)s')
@click.pass_context
def cli(ctx: click.Context, config: Optional[Path], verbose: int) -> None:
    """
    DevZ - run a DayZ server and client and follow their logs.

    Usage Examples:
      devz run                              # Start server, then client
      devz run --no-client                  # Start the server only
      devz watch --server-dir out/ServerProfile
      devz classify script_2025-01-01_10-00-00.log --role client
      devz config --validate
    """
    _set_verbosity(verbose)

    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config


@cli.command(help="Start the server and client and stream their logs until Ctrl-C.")
@click.option('--no-client', is_flag=True, help='Start the server only')
@click.pass_context
def run(ctx: click.Context, no_client: bool) -> None:
    """
    Start the server, then the client a few seconds later.

    Every log line from both profile directories is printed to the console.
    Ctrl-C stops both processes.
    """
    exit_code = run_processes(config_path=ctx.obj.get('config_path'), server=True, client=not no_client)
    sys.exit(exit_code)


@cli.command(help="Start the dedicated server only.")
@click.pass_context
def server(ctx: click.Context) -> None:
    exit_code = run_processes(config_path=ctx.obj.get('config_path'), server=True, client=False)
    sys.exit(exit_code)


@cli.command(help="Start the game client only.")
@click.pass_context
def client(ctx: click.Context) -> None:
    exit_code = run_processes(config_path=ctx.obj.get('config_path'), server=False, client=True)
    sys.exit(exit_code)


@cli.command(help="Follow the log files of profile directories without starting anything.")
@click.option('--server-dir', type=click.Path(file_okay=False, path_type=Path),
              help='Server profile directory to watch')
@click.option('--client-dir', type=click.Path(file_okay=False, path_type=Path),
              help='Client profile directory to watch')
@click.pass_context
def watch(ctx: click.Context, server_dir: Optional[Path], client_dir: Optional[Path]) -> None:
    """
    Follow the log files of profile directories.

    With no directory options, both configured profile directories are
    watched.

    Examples:
      devz watch
      devz watch --server-dir out/ServerProfile
    """
    exit_code = run_watch(config_path=ctx.obj.get('config_path'),
                          server_dir=server_dir, client_dir=client_dir)
    sys.exit(exit_code)


@cli.command(help="Show how a log filename would be classified.")
@click.argument('filename')
@click.option('--role', type=click.Choice(['server', 'client'], case_sensitive=False),
              default='server', help='Role of the directory the file is in (default: server)')
def classify(filename: str, role: str) -> None:
    exit_code = run_classify(filename, role)
    sys.exit(exit_code)


@cli.command('config', help="Show, validate or create configuration.")
@click.option('--show', is_flag=True, help='Show the effective configuration')
@click.option('--validate', 'validate_config', is_flag=True, help='Validate configuration')
@click.option('--init', 'init_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Write a default configuration file to PATH')
@click.pass_context
def config_cmd(ctx: click.Context, show: bool, validate_config: bool, init_path: Optional[Path]) -> None:
    """
    Show, validate or create configuration.

    Examples:
      devz config --show
      devz config --validate
      devz config --init devz.yaml
    """
    exit_code = run_config_commands(config_path=ctx.obj.get('config_path'), show=show,
                                    validate_config=validate_config, init_path=init_path)
    sys.exit(exit_code)


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
