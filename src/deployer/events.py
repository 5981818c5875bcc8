"""Deploy event reporting.

Non-fatal problems during a deploy (unreadable manifests, namespaces that
could not be collected) become events rather than errors.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Receives informational and warning records."""

    def info(self, message: str) -> None:
        """Record an informational event."""

    def warning(self, message: str) -> None:
        """Record a warning event."""


@dataclass
class DeployEvent:
    """A single recorded event."""
    level: str  # 'info' or 'warning'
    message: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {'level': self.level, 'message': self.message, 'timestamp': self.timestamp}


@dataclass
class EventLog:
    """EventSink that logs each event and keeps it for reporting."""
    events: list[DeployEvent] = field(default_factory=list)

    def info(self, message: str) -> None:
        logger.info(message)
        self.events.append(DeployEvent('info', message))

    def warning(self, message: str) -> None:
        logger.warning(message)
        self.events.append(DeployEvent('warning', message))

    def messages(self, level: str = '') -> list[str]:
        """Return event messages, optionally filtered by level."""
        return [e.message for e in self.events if not level or e.level == level]
