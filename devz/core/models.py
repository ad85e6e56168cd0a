"""
Core data models for DevZ.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class ProcessKind(str, Enum):
    """The two external executables managed by a session."""
    SERVER = "server"
    CLIENT = "client"

    @property
    def role(self) -> 'LogRole':
        return LogRole.SERVER if self is ProcessKind.SERVER else LogRole.CLIENT

    @property
    def label(self) -> str:
        return self.value.capitalize()


class LogRole(str, Enum):
    """Which profile directory a log file was found in."""
    SERVER = "SERVER"
    CLIENT = "CLIENT"


class LogCategory(Enum):
    """
    Log kinds inferred from the shape of a filename.

    Each value carries its display label and icon. GENERIC has no fixed
    label; the classifier derives one from the filename.
    """
    SERVER_RPT = ("Server RPT", "📝")
    SERVER_ADMIN = ("Server Admin", "👑")
    SERVER_SCRIPT = ("Server Script", "📜")
    SERVER_CRASH = ("Server Crash", "💥")
    CLIENT_RPT = ("Client RPT", "🎮")
    CLIENT_SCRIPT = ("Client Script", "📜")
    CLIENT_CRASH = ("Client Crash", "💥")
    GENERIC = ("Log", "📄")

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def icon(self) -> str:
        return self.value[1]

    @property
    def has_sink(self) -> bool:
        return self is not LogCategory.GENERIC


class ProcessState(str, Enum):
    """Lifecycle states of a ProcessHandle."""
    UNSTARTED = "unstarted"
    SPAWNING = "spawning"
    RUNNING = "running"
    GRACEFUL_SIGNAL = "graceful_signal"
    FORCE_SIGNAL = "force_signal"
    OS_KILL = "os_kill"
    EXITED = "exited"
    CRASHED = "crashed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessState.EXITED, ProcessState.CRASHED)

    @property
    def is_stopping(self) -> bool:
        return self in (ProcessState.GRACEFUL_SIGNAL, ProcessState.FORCE_SIGNAL, ProcessState.OS_KILL)


# Forward-only transitions; anything not listed is rejected
_TRANSITIONS = {
    ProcessState.UNSTARTED: {ProcessState.SPAWNING},
    ProcessState.SPAWNING: {ProcessState.RUNNING, ProcessState.CRASHED},
    ProcessState.RUNNING: {ProcessState.GRACEFUL_SIGNAL, ProcessState.EXITED, ProcessState.CRASHED},
    ProcessState.GRACEFUL_SIGNAL: {ProcessState.FORCE_SIGNAL, ProcessState.EXITED},
    ProcessState.FORCE_SIGNAL: {ProcessState.OS_KILL, ProcessState.EXITED},
    ProcessState.OS_KILL: {ProcessState.EXITED},
    ProcessState.EXITED: set(),
    ProcessState.CRASHED: set(),
}


@dataclass
class ProcessHandle:
    """
    Bookkeeping record for one externally spawned process.
    """
    kind: ProcessKind
    executable: Path
    state: ProcessState = ProcessState.UNSTARTED
    pid: Optional[int] = None
    last_exit_code: Optional[int] = None
    forced: bool = False
    ready: bool = False
    profile_dir: Optional[Path] = None
    process: Any = field(default=None, repr=False)
    exited: Any = field(default=None, repr=False)

    def can_transition(self, new_state: ProcessState) -> bool:
        return new_state in _TRANSITIONS[self.state]

    def transition(self, new_state: ProcessState) -> bool:
        """
        Move to new_state if the state machine allows it.

        Returns:
            True if the transition happened, False if it was rejected
        """
        if not self.can_transition(new_state):
            return False
        self.state = new_state
        return True

    @property
    def is_alive(self) -> bool:
        return self.state not in (ProcessState.UNSTARTED, ProcessState.EXITED, ProcessState.CRASHED)


@dataclass(frozen=True)
class MonitoredDirectory:
    """A profile directory watched for log files."""
    path: Path
    role: LogRole


@dataclass(frozen=True)
class Classification:
    """Result of classifying a log filename."""
    category: LogCategory
    label: str
    icon: str


@dataclass
class LogLine:
    """
    One complete line observed in a tailed file.
    """
    raw_text: str
    observed_at: datetime
    classification: Classification
    role: LogRole
    file_path: Optional[Path] = None

    @property
    def category(self) -> LogCategory:
        return self.classification.category
