"""Exclusive wake-keeping resource held across in-flight network steps.

``WakeLockGuard`` wraps whatever the host offers to keep the process from
being suspended (``WakeResource``).  Every network step calls ``extend()``
right before its request and ``release()`` on every exit path.

Re-extending while held releases first and re-acquires for the new
duration; the remaining hold time is reset, not added to.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

logger = logging.getLogger("tidesync.uploader.wakelock")


class WakeResource(Protocol):
    def acquire(self, duration_ms: int) -> None: ...

    def is_held(self) -> bool: ...

    def release(self) -> None: ...


class InProcessWakeLock:
    """Timed hold tracked in-process; expires on its own after ``duration_ms``.

    Stands in for an OS power lock where none is available, and keeps the
    same timeout semantics: a hold that is never released still lapses.
    """

    def __init__(self, tag: str = "tidesync:uploader", clock: Callable[[], float] = time.monotonic) -> None:
        self.tag = tag
        self._clock = clock
        self._deadline: float | None = None
        self.acquire_count = 0

    def acquire(self, duration_ms: int) -> None:
        self._deadline = self._clock() + duration_ms / 1000.0
        self.acquire_count += 1
        logger.debug("%s acquired for %d ms", self.tag, duration_ms)

    def is_held(self) -> bool:
        if self._deadline is None:
            return False
        if self._clock() >= self._deadline:
            self._deadline = None
            return False
        return True

    def release(self) -> None:
        if self._deadline is None:
            raise RuntimeError(f"{self.tag} released while not held")
        self._deadline = None
        logger.debug("%s released", self.tag)


class WakeLockGuard:
    """Serialized extend/release over a single ``WakeResource``."""

    def __init__(self, resource: WakeResource | None = None) -> None:
        self._resource: WakeResource = resource or InProcessWakeLock()
        self._lock = threading.Lock()

    @property
    def resource(self) -> WakeResource:
        return self._resource

    def is_held(self) -> bool:
        return self._resource.is_held()

    def extend(self, duration_ms: int) -> None:
        """Hold the resource for ``duration_ms`` from now."""
        with self._lock:
            self._release_locked()
            self._resource.acquire(duration_ms)

    def release(self) -> None:
        """Release if held.  Never raises."""
        with self._lock:
            self._release_locked()

    def _release_locked(self) -> None:
        try:
            if self._resource.is_held():
                self._resource.release()
        except Exception as exc:
            logger.error("Error releasing wakelock: %s", exc)
