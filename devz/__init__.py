"""
DevZ - a development runner for DayZ mods.

This package starts and stops the DayZ dedicated server and game client and
streams their log files, classified and formatted, while they run.
"""

__version__ = "0.1.0"

# Import main modules for easy access
from . import config
from . import core
from . import utils

# Define what gets imported with "from devz import *"
__all__ = [
    "config",
    "core",
    "utils",
    "__version__"
]


# Define the CLI entry point function
def main():
    """Main entry point for the CLI."""
    from .cli import main as cli_main
    return cli_main()
