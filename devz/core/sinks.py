"""
Log sinks and the multiplexer that fans lines out to them.

A sink is an append-only, named list of display lines. The multiplexer owns
one combined sink plus one sink per fixed log category, created on first use.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..utils.formatting import FormattingUtils
from .event_bus import LOG_LINE, EventBus, LogEvent
from .models import LogCategory, LogLine

COMBINED_SINK = "combined"


class Sink:
    """
    Append-only buffer of display lines.
    """

    def __init__(self, name: str):
        self.name = name
        self._lines: List[str] = []

    def append(self, line: str):
        self._lines.append(line)

    def clear(self):
        self._lines.clear()

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    @property
    def last_line(self) -> Optional[str]:
        return self._lines[-1] if self._lines else None

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, line: str) -> bool:
        return line in self._lines

    def __repr__(self) -> str:
        return f"Sink(name={self.name!r}, lines={len(self._lines)})"


class SinkMultiplexer:
    """
    Routes formatted log lines to the combined sink and to category sinks.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        """
        Initialize the multiplexer.

        Args:
            event_bus: Optional event bus; every routed line is published on it
        """
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self.combined = Sink(COMBINED_SINK)
        self._category_sinks: Dict[LogCategory, Sink] = {}

    def sink_for(self, category: LogCategory) -> Sink:
        """
        Get the sink for a category, creating it on first use.

        Raises:
            ValueError: If the category has no dedicated sink
        """
        if not category.has_sink:
            raise ValueError(f"Category {category.name} is routed to the combined sink only")
        sink = self._category_sinks.get(category)
        if sink is None:
            sink = Sink(category.label)
            self._category_sinks[category] = sink
            self.logger.debug(f"Created sink: {sink.name}")
        return sink

    def get_sink(self, category: LogCategory) -> Optional[Sink]:
        """Get an existing category sink without creating it."""
        return self._category_sinks.get(category)

    @property
    def sinks(self) -> Dict[str, Sink]:
        """All active sinks keyed by name, combined first."""
        result = {self.combined.name: self.combined}
        for sink in self._category_sinks.values():
            result[sink.name] = sink
        return result

    def route(self, line: LogLine) -> str:
        """
        Format a line and append it to the combined and category sinks.

        Args:
            line: Observed log line

        Returns:
            The formatted display line
        """
        classification = line.classification
        formatted = FormattingUtils.format_log_line(
            classification.icon, line.observed_at, classification.label, line.raw_text)

        self.combined.append(formatted)
        sink_names = [self.combined.name]
        if line.category.has_sink:
            sink = self.sink_for(line.category)
            sink.append(formatted)
            sink_names.append(sink.name)

        if self.event_bus:
            self.event_bus.publish(LogEvent(type=LOG_LINE, data={
                'line': formatted,
                'category': line.category,
                'role': line.role,
                'sinks': sink_names,
            }, source='sinks'))

        return formatted

    def reset_all(self, directories: Iterable[str] = (), started_at: Optional[datetime] = None):
        """
        Clear every sink and write the session-start banner.

        Args:
            directories: Directories being watched in the new session
            started_at: Session start time, defaults to now
        """
        banner = FormattingUtils.format_session_banner(started_at or datetime.now(), directories)
        for sink in self.sinks.values():
            sink.clear()
            for banner_line in banner:
                sink.append(banner_line)
        self.logger.debug("Reset all sinks")

    def stop_all(self, stopped_at: Optional[datetime] = None):
        """Append a stop marker to every active sink without clearing it."""
        marker = FormattingUtils.format_stop_marker(stopped_at or datetime.now())
        for sink in self.sinks.values():
            sink.append(marker)
