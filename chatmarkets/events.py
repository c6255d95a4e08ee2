"""
Structured event sinks for pipeline diagnostics.

Pipeline components emit named events with keyword fields instead of
formatting log lines themselves. The sink decides how events are rendered.
"""

import logging
from typing import Any, Optional, Protocol

# Configure module logger
logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Receiver for pipeline events such as "chunking:start" or "model:attempt"."""

    def record(self, name: str, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """
    Default sink that writes events through the logging module.

    Args:
        log: Logger to write to (defaults to this module's logger)
        level: Logging level used for every event
    """

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def record(self, name: str, **fields: Any) -> None:
        details = ", ".join(f"{key}={value!r}" for key, value in fields.items())
        self.log.log(self.level, f"[{name}] {details}" if details else f"[{name}]")


class MemoryEventSink:
    """Sink that keeps every event in memory, in emission order."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def record(self, name: str, **fields: Any) -> None:
        self.events.append((name, dict(fields)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def find(self, name: str) -> list[dict[str, Any]]:
        """Return the fields of every event recorded under name."""
        return [fields for event_name, fields in self.events if event_name == name]
