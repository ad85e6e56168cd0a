"""
Settings management for DevZ.

This module provides application-wide settings and constants.
"""

from dataclasses import dataclass


@dataclass
class Settings:
    """Application settings and constants."""

    # Application settings
    APP_NAME: str = "DevZ"
    APP_VERSION: str = "0.1.0"

    # Default paths
    DEFAULT_CONFIG_PATH: str = "./devz.yaml"
    DEFAULT_OUT_DIR: str = "out"
    DEFAULT_MISSION: str = "dayzOffline.enoch"
    DEFAULT_SERVER_CONFIG: str = "server.cfg"
    SERVER_PROFILE_DIR: str = "ServerProfile"
    SERVER_STORAGE_DIR: str = "ServerStorage"
    CLIENT_PROFILE_DIR: str = "ClientProfile"

    # Executables
    SERVER_EXECUTABLE: str = "DayZServer_x64.exe"
    CLIENT_EXECUTABLE: str = "DayZ_BE.exe"
    # The BattlEye launcher detaches the real game process
    CLIENT_KILL_NAMES: tuple = ("DayZ_BE.exe", "DayZ_x64.exe")
    SERVER_KILL_NAMES: tuple = ("DayZServer_x64.exe",)
    SWEEP_NAME_PATTERNS: tuple = ("DayZ*", "DayZServer*")

    # Network
    DEFAULT_SERVER_ADDRESS: str = "127.0.0.1:2302"
    DEFAULT_SERVER_PORT: int = 2302

    # Diagnostic flags
    SERVER_LOG_FLAGS: tuple = ("-dologs", "-adminlog", "-netlog")
    CLIENT_LOG_FLAGS: tuple = ("-doLogs",)

    # Shutdown escalation (seconds)
    CLIENT_GRACE_PERIOD: float = 1.0
    CLIENT_FORCE_WINDOW: float = 1.0
    CLIENT_CLEANUP_WINDOW: float = 3.0
    SERVER_GRACE_PERIOD: float = 10.0
    SERVER_FORCE_WINDOW: float = 0.0
    SERVER_CLEANUP_WINDOW: float = 3.0
    SWEEP_DELAY: float = 15.0
    SWEEP_CLEAR_DELAY: float = 3.0
    CLIENT_START_DELAY: float = 3.0

    # Monitoring settings
    DEFAULT_TAIL_BACKEND: str = "follow"
    DEFAULT_TAIL_COMMAND: str = "tail"
    DEFAULT_POLL_INTERVAL: float = 0.25
    TAIL_READ_SIZE: int = 4096
    TAIL_CLOSE_TIMEOUT: float = 2.0

    # Logging settings
    DEFAULT_LOG_LEVEL: str = "INFO"

    # Log file recognition
    TIMESTAMP_PATTERN: str = r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}"
    GENERIC_LOG_EXTENSIONS: tuple = ('.log', '.rpt', '.adm')
    CATEGORY_LABEL_WIDTH: int = 13

    # Process output markers
    READY_MARKERS: tuple = ("Game Server Init Complete", "Host identity created")
    SERVER_ERROR_MARKERS: tuple = ("EXCEPTION", "ERROR")
    CLIENT_WARNING_MARKERS: tuple = ("Connection failed", "EXCEPTION")
    NOTIFICATION_PREVIEW_LENGTH: int = 100

    def __post_init__(self):
        # Ensure extensions are tuples to prevent modification
        if not isinstance(self.GENERIC_LOG_EXTENSIONS, tuple):
            self.GENERIC_LOG_EXTENSIONS = tuple(self.GENERIC_LOG_EXTENSIONS)
