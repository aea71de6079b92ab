"""Outbound user notifications.

The chat transport is a collaborator: anything with ``send(destination, text)``
works. Delivery is fire-and-forget relative to state changes; callers commit
first and notify afterwards, and a failing transport is logged, not retried.
"""

from __future__ import annotations

from typing import Optional, Protocol

from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


class Notifier(Protocol):
    def send(self, destination: str, text: str) -> None:
        ...


class LoggingNotifier:
    """Default transport: writes outgoing messages to the log."""

    def send(self, destination: str, text: str) -> None:
        logger.info("Message to %s: %s", destination, text)


class NotificationDispatcher:
    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        supervisor_destination: Optional[str] = None,
    ) -> None:
        self._notifier = notifier or LoggingNotifier()
        self._supervisor_destination = supervisor_destination

    def notify(self, destination: Optional[str], text: str) -> bool:
        """Deliver one message; returns False when delivery failed or was skipped."""
        if not destination:
            logger.warning("Dropping notification without destination: %s", text)
            return False
        try:
            self._notifier.send(destination, text)
            return True
        except Exception:
            logger.exception("Notification delivery to %s failed", destination)
            return False

    def notify_supervisor(self, text: str) -> bool:
        if not self._supervisor_destination:
            return False
        return self.notify(self._supervisor_destination, text)
