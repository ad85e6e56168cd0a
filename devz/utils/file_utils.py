"""
File utilities module for DevZ.

This module provides the profile directory housekeeping done before a
process is started.
"""

import os
from pathlib import Path
import logging

from ..core.classifier import is_stale_log


class FileUtils:
    """
    Utility class for file operations.
    """

    logger = logging.getLogger(__name__)

    @staticmethod
    def ensure_directory_exists(directory: Path) -> bool:
        """
        Ensure that a directory exists, creating it if necessary.

        Args:
            directory: Directory path to ensure

        Returns:
            True if directory exists or was created successfully
        """
        try:
            directory.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            FileUtils.logger.error(f"Failed to create directory {directory}: {str(e)}")
            return False

    @staticmethod
    def clear_old_logs(profile_dir: Path) -> int:
        """
        Delete log files and crash dumps left by earlier runs.

        Files that cannot be deleted (typically still held open by a running
        process) are skipped.

        Args:
            profile_dir: Profile directory to clean

        Returns:
            Number of files deleted
        """
        try:
            names = os.listdir(profile_dir)
        except FileNotFoundError:
            return 0
        except OSError as e:
            FileUtils.logger.warning(f"Error clearing logs in {profile_dir}: {str(e)}")
            return 0

        deleted = 0
        for name in names:
            if not is_stale_log(name):
                continue
            try:
                (profile_dir / name).unlink()
                deleted += 1
            except OSError as e:
                FileUtils.logger.info(f"Could not delete {name}: {str(e)}")

        if deleted:
            FileUtils.logger.info(f"Cleared {deleted} old log file(s) from {profile_dir}")
        return deleted
