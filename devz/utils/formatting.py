"""
Formatting utilities module for DevZ.

This module builds the display lines written to sinks.
"""

import re
from datetime import datetime
from typing import Iterable, List
import logging

from ..config.settings import Settings

_LABEL_WIDTH = Settings().CATEGORY_LABEL_WIDTH
_LEADING_CLOCK_RE = re.compile(r'^\s*\d{1,2}:\d{2}:\d{2}(?:\.\d+)?\s*')
_MARKER_RE = re.compile(r'^SCRIPT\s*:\s*')
SEPARATOR = '│'
BANNER_RULE = '=' * 60


class FormattingUtils:
    """
    Utility class for formatting operations.
    """

    logger = logging.getLogger(__name__)

    @staticmethod
    def clean_content(text: str) -> str:
        """
        Strip the parts of a raw log line that the display prefix repeats.

        The leading clock timestamp written by the game and the literal
        ``SCRIPT :`` marker are removed; everything else is kept.

        Args:
            text: Raw line content

        Returns:
            Cleaned content
        """
        cleaned = _LEADING_CLOCK_RE.sub('', text, count=1)
        cleaned = _MARKER_RE.sub('', cleaned, count=1)
        return cleaned.rstrip()

    @staticmethod
    def format_time(observed_at: datetime) -> str:
        return observed_at.strftime('%H:%M:%S')

    @staticmethod
    def format_log_line(icon: str, observed_at: datetime, label: str, text: str) -> str:
        """
        Compose an aligned display line.

        Args:
            icon: Category icon
            observed_at: When the line was observed
            label: Category label, padded to a fixed width
            text: Raw line content

        Returns:
            ``"<icon> [<time>] <label padded> │ <cleaned content>"``
        """
        return (f"{icon} [{FormattingUtils.format_time(observed_at)}] "
                f"{label.ljust(_LABEL_WIDTH)} {SEPARATOR} {FormattingUtils.clean_content(text)}")

    @staticmethod
    def format_session_banner(started_at: datetime, directories: Iterable[str]) -> List[str]:
        """Lines written at the top of every sink when a session starts."""
        lines = [
            BANNER_RULE,
            f"Log monitoring started at {started_at.strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        watched = list(directories)
        if watched:
            lines.extend(f"Watching: {directory}" for directory in watched)
        else:
            lines.append("Watching: (no directories)")
        lines.append(BANNER_RULE)
        return lines

    @staticmethod
    def format_stop_marker(stopped_at: datetime) -> str:
        return f"--- Log monitoring stopped at {stopped_at.strftime('%Y-%m-%d %H:%M:%S')} ---"
