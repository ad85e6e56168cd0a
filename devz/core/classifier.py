"""
Log file classification for DevZ.

Maps a log filename, qualified by the role of the directory it lives in, to
one of the fixed log categories. Pure and stateless.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..config.settings import Settings
from .models import Classification, LogCategory, LogRole

_SETTINGS = Settings()
_TS = _SETTINGS.TIMESTAMP_PATTERN
_TIMESTAMP_RE = re.compile(r'[_-]?' + _TS)

# Checked in order; the first match wins
_PATTERNS: Dict[LogRole, List[Tuple[re.Pattern, LogCategory]]] = {
    LogRole.SERVER: [
        (re.compile(rf'^DayZServer_x64_{_TS}\.RPT$'), LogCategory.SERVER_RPT),
        (re.compile(rf'^DayZServer_x64_{_TS}\.ADM$'), LogCategory.SERVER_ADMIN),
        (re.compile(rf'^script_{_TS}\.log$'), LogCategory.SERVER_SCRIPT),
        (re.compile(rf'^crash_{_TS}\.log$'), LogCategory.SERVER_CRASH),
    ],
    LogRole.CLIENT: [
        (re.compile(rf'^DayZ(?:_x64)?_{_TS}\.RPT$'), LogCategory.CLIENT_RPT),
        (re.compile(rf'^script_{_TS}\.log$'), LogCategory.CLIENT_SCRIPT),
        (re.compile(rf'^crash_{_TS}\.log$'), LogCategory.CLIENT_CRASH),
    ],
}

# Removed before a session starts so stale files are never re-tailed
STALE_LOG_PATTERNS = [
    re.compile(rf'^script_{_TS}\.log$'),
    re.compile(rf'^DayZServer_x64_{_TS}\.RPT$'),
    re.compile(rf'^DayZServer_x64_{_TS}\.ADM$'),
    re.compile(rf'^DayZ(?:_x64)?_{_TS}\.RPT$'),
    re.compile(rf'^crash_{_TS}\.log$'),
    re.compile(r'^ErrorMessage_DayZServer_x64_.*\.mdmp$'),
    re.compile(r'^ErrorMessage_DayZ_.*\.mdmp$'),
]


def _name_of(filename: Union[str, Path]) -> str:
    return Path(filename).name


def generic_label(filename: Union[str, Path]) -> str:
    """
    Derive a display label for an unrecognised log file.

    The embedded timestamp and the extension are removed, so
    ``profiler_2025-01-01_10-00-00.log`` becomes ``profiler``.
    """
    stem = Path(_name_of(filename)).stem
    label = _TIMESTAMP_RE.sub('', stem).strip('_- ')
    return label or LogCategory.GENERIC.label


def classify(filename: Union[str, Path], role: LogRole) -> Optional[Classification]:
    """
    Classify a log filename.

    Args:
        filename: File name or path; only the final component is used
        role: Role of the directory the file was found in

    Returns:
        The classification, or None if the file is not a log file
    """
    name = _name_of(filename)
    for pattern, category in _PATTERNS[LogRole(role)]:
        if pattern.match(name):
            return Classification(category, category.label, category.icon)

    if Path(name).suffix.lower() in _SETTINGS.GENERIC_LOG_EXTENSIONS:
        return Classification(LogCategory.GENERIC, generic_label(name), LogCategory.GENERIC.icon)

    return None


def is_stale_log(filename: Union[str, Path]) -> bool:
    """Check whether a file is a log or crash dump left by an earlier run."""
    name = _name_of(filename)
    return any(pattern.match(name) for pattern in STALE_LOG_PATTERNS)
