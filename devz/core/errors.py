"""
Exception types for DevZ.

Only SpawnError reaches callers; the rest are raised inside a component and
logged where they are caught.
"""


class DevzError(Exception):
    """Base exception for DevZ errors."""
    pass


class SpawnError(DevzError):
    """Raised when an external executable cannot be launched."""

    def __init__(self, kind, message: str):
        super().__init__(message)
        self.kind = kind


class ProcessExitError(DevzError):
    """A managed process exited abnormally after it was running."""

    def __init__(self, kind, exit_code):
        super().__init__(f"{kind.value} exited unexpectedly (code: {exit_code})")
        self.kind = kind
        self.exit_code = exit_code


class WatchError(DevzError):
    """A monitored directory could not be read or watched."""
    pass


class TailSpawnError(DevzError):
    """The follow helper for one log file could not be started."""
    pass


class KillAttemptError(DevzError):
    """One step of the shutdown escalation failed."""
    pass
