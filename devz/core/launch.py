"""
Command lines for the server and client executables.
"""

import os
from pathlib import Path, PureWindowsPath
from typing import List

from ..config.config import Config
from ..config.settings import Settings

_SETTINGS = Settings()


def _is_absolute(mod: str) -> bool:
    return os.path.isabs(mod) or PureWindowsPath(mod).is_absolute()


def build_mod_string(config: Config) -> str:
    """
    Build the semicolon-joined ``-mod`` value.

    The packed mod under ``out/@<name>`` comes first; additional mods are
    used as-is when absolute, otherwise treated as workshop ids.
    """
    mods = [str(config.out_dir / f"@{config.mod.name}")]
    for mod in config.mod.additional_mods:
        mod = str(mod)
        mods.append(mod if _is_absolute(mod) else str(Path(config.paths.workshop_dir) / mod))
    return ';'.join(mods)


def server_args(config: Config) -> List[str]:
    """Arguments for the dedicated server."""
    return [
        f"-mod={build_mod_string(config)}",
        f"-mission={config.project_dir / config.paths.mission}",
        f"-config={config.project_dir / config.paths.server_config}",
        f"-profiles={config.server_profile_dir}",
        f"-storage={config.server_storage_dir}",
        f"-port={config.network.server_port}",
        *_SETTINGS.SERVER_LOG_FLAGS,
    ]


def client_args(config: Config) -> List[str]:
    """Arguments for the game client."""
    return [
        f"-mod={build_mod_string(config)}",
        f"-connect={config.network.server_address}",
        f"-profiles={config.client_profile_dir}",
        *_SETTINGS.CLIENT_LOG_FLAGS,
    ]
