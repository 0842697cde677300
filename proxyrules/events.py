"""Log levels and a log that publishes events to subscribers."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import IntEnum


class LogLevel(IntEnum):
    """Severity of a log event; higher is more severe."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    SILENT = 4

    @classmethod
    def parse(cls, text: str) -> "LogLevel":
        """Level named by ``text``; raises ValueError for unknown names."""
        for member in cls:
            if str(member) == text:
                return member
        raise ValueError("invalid mode")

    def __str__(self) -> str:
        return self.name.lower()


_PY_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_level = LogLevel.INFO
_logger = logging.getLogger("proxyrules")


def get_level() -> LogLevel:
    """Minimum level that is written to the process log."""
    return _level


def set_level(level: LogLevel) -> None:
    """Change the minimum level that is written to the process log."""
    global _level
    _level = LogLevel(level)


@dataclass(frozen=True)
class Event:
    """One log message."""

    level: LogLevel
    payload: str

    def type(self) -> str:
        return str(self.level)


class EventLog:
    """Publishes every event to subscribers and writes it to the process log."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[queue.SimpleQueue] = []

    def subscribe(self) -> queue.SimpleQueue:
        """A queue that receives every event emitted from now on."""
        subscription: queue.SimpleQueue = queue.SimpleQueue()
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: queue.SimpleQueue) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def emit(self, level: LogLevel, message: str, *args) -> Event:
        event = Event(LogLevel(level), message % args if args else message)
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.put(event)
        if event.level >= _level and event.level in _PY_LEVELS:
            _logger.log(_PY_LEVELS[event.level], event.payload)
        return event

    def debug(self, message: str, *args) -> Event:
        return self.emit(LogLevel.DEBUG, message, *args)

    def info(self, message: str, *args) -> Event:
        return self.emit(LogLevel.INFO, message, *args)

    def warning(self, message: str, *args) -> Event:
        return self.emit(LogLevel.WARNING, message, *args)

    def error(self, message: str, *args) -> Event:
        return self.emit(LogLevel.ERROR, message, *args)


_default_log = EventLog()


def default_log() -> EventLog:
    """The process-wide event log."""
    return _default_log