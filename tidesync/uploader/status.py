"""Status messages for whoever is watching the uploader (UI, API, logs).

Fire-and-forget: ``report()`` never raises, and a misbehaving subscriber
cannot break the upload chain that emitted the message.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

logger = logging.getLogger("tidesync.uploader.status")


@dataclass(frozen=True)
class StatusEvent:
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


StatusCallback = Callable[[StatusEvent], None]


class StatusReporter:
    """Keeps the last ``history_size`` messages and fans them out to subscribers."""

    def __init__(self, history_size: int = 50) -> None:
        self._history: deque[StatusEvent] = deque(maxlen=history_size)
        self._subscribers: list[StatusCallback] = []

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def report(self, message: str) -> None:
        event = StatusEvent(message)
        self._history.append(event)
        logger.info("Tidepool status: %s", message)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as exc:
                logger.warning("Status subscriber %r failed: %s", callback, exc)

    @property
    def last(self) -> str | None:
        return self._history[-1].message if self._history else None

    def history(self) -> list[StatusEvent]:
        return list(self._history)

    def messages(self) -> list[str]:
        return [e.message for e in self._history]
