"""
Event bus module for DevZ.

This module provides the publish/subscribe channel through which the core
notifies the presentation layer: process lifecycle changes, user-facing
notifications and newly routed log lines.
"""

import threading
from typing import Any, Callable, Dict, List, Type, Union
from dataclasses import dataclass
from datetime import datetime
import logging

# Event type names
PROCESS_STARTED = 'process.started'
PROCESS_READY = 'process.ready'
PROCESS_EXITED = 'process.exited'
PROCESS_CRASHED = 'process.crashed'
SHUTDOWN_STARTED = 'shutdown.started'
SHUTDOWN_COMPLETE = 'shutdown.complete'
NOTIFICATION = 'notification'
LOG_LINE = 'log.line'
SINK_SHOW = 'sink.show'
MONITORING_STARTED = 'monitoring.started'
MONITORING_STOPPED = 'monitoring.stopped'


@dataclass
class Event:
    """
    Base event class for the event bus system.
    """
    type: str
    data: Any = None
    timestamp: datetime = None
    source: str = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class ProcessEvent(Event):
    """Event related to a managed process."""
    pass


class LogEvent(Event):
    """Event carrying a routed log line."""
    pass


class NotificationEvent(Event):
    """A message meant for the operator; data holds 'level' and 'message'."""
    pass


class EventBus:
    """
    Centralized event bus for application communication.
    """

    def __init__(self):
        """Initialize the event bus."""
        self._handlers: Dict[str, List[Callable]] = {}
        self._type_handlers: Dict[Type, List[Callable]] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: str, handler: Callable):
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to
            handler: Function to call when event is published
        """
        with self._lock:
            if event_type not in self._handlers:
                self._handlers[event_type] = []
            self._handlers[event_type].append(handler)
            self.logger.debug(f"Subscribed to event type: {event_type}")

    def subscribe_to_type(self, event_class: Type, handler: Callable):
        """
        Subscribe to a specific event class type.

        Args:
            event_class: Event class to subscribe to
            handler: Function to call when event is published
        """
        with self._lock:
            if event_class not in self._type_handlers:
                self._type_handlers[event_class] = []
            self._type_handlers[event_class].append(handler)
            self.logger.debug(f"Subscribed to event type: {event_class.__name__}")

    def publish(self, event: Union[Event, str], data: Any = None, source: str = None):
        """
        Publish an event to all subscribed handlers.

        Args:
            event: Event object or event type string
            data: Data to include with the event (if event is a string)
            source: Source identifier for the event
        """
        if isinstance(event, str):
            event = Event(type=event, data=data, source=source)

        self.logger.debug(f"Publishing event: {event.type} from {event.source or 'unknown'}")

        with self._lock:
            handlers = list(self._handlers.get(event.type, []))
            type_handlers = []

            # Find handlers for parent types too
            for event_class, class_handlers in self._type_handlers.items():
                if isinstance(event, event_class):
                    type_handlers.extend(class_handlers)

        # Execute handlers (outside the lock to prevent deadlocks)
        for handler in handlers + type_handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler for {event.type}: {str(e)}")

    def notify(self, level: str, message: str, source: str = None):
        """
        Publish an operator notification.

        Args:
            level: One of 'info', 'warning', 'error'
            message: Text to show
            source: Source identifier for the event
        """
        self.publish(NotificationEvent(type=NOTIFICATION,
                                       data={'level': level, 'message': message},
                                       source=source))
