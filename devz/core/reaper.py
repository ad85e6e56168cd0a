"""
OS-level process killing for DevZ.

Used as the last resort of the shutdown escalation, when signalling the
tracked child process has not been enough.
"""

import fnmatch
import logging
import os
from abc import ABC, abstractmethod
from typing import List

import psutil

from .errors import KillAttemptError

logger = logging.getLogger(__name__)


class ProcessReaper(ABC):
    """
    Capability to kill processes by pid or by executable name.
    """

    @abstractmethod
    def kill_by_pid(self, pid: int) -> bool:
        """
        Kill a process and its descendants.

        Returns:
            True if anything was killed, False if the process was already gone

        Raises:
            KillAttemptError: If the process could not be killed
        """

    @abstractmethod
    def kill_by_name(self, pattern: str) -> int:
        """
        Kill every process whose name matches a glob pattern.

        Returns:
            Number of processes killed

        Raises:
            KillAttemptError: If a matching process could not be killed
        """


class PsutilReaper(ProcessReaper):
    """ProcessReaper backed by psutil process enumeration."""

    def kill_by_pid(self, pid: int) -> bool:
        try:
            process = psutil.Process(pid)
            targets = process.children(recursive=True) + [process]
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as e:
            raise KillAttemptError(f"Access denied inspecting pid {pid}") from e

        failures = self._kill_all(targets)
        if failures:
            raise KillAttemptError(f"Could not kill pid(s): {', '.join(map(str, failures))}")
        logger.debug(f"Killed pid {pid} and {len(targets) - 1} descendant(s)")
        return True

    def kill_by_name(self, pattern: str) -> int:
        own_pid = os.getpid()
        targets = []
        for process in psutil.process_iter(['pid', 'name']):
            name = process.info.get('name') or ''
            if process.info['pid'] != own_pid and fnmatch.fnmatch(name.lower(), pattern.lower()):
                targets.append(process)

        failures = self._kill_all(targets)
        if failures:
            raise KillAttemptError(f"Could not kill '{pattern}' pid(s): {', '.join(map(str, failures))}")
        if targets:
            logger.info(f"Killed {len(targets)} process(es) matching '{pattern}'")
        return len(targets)

    @staticmethod
    def _kill_all(processes: List[psutil.Process]) -> List[int]:
        failures = []
        for process in processes:
            try:
                process.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                failures.append(process.pid)
        return failures
