"""Persisted "last uploaded" watermark for incremental sync.

The watermark is the end of the last window Tidepool acknowledged.  It is
stored as integer epoch milliseconds in a small key-value store and is
clamped on every read to at most two months back, so a missing or stale
value never asks for more than the retention window of history.

Usage::

    store = WatermarkStore(JsonFileStore(settings.state_path))
    start = store.read()
    ...
    store.advance(session.window_end)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from tidesync.uploader.status import StatusReporter

logger = logging.getLogger("tidesync.uploader.watermark")

LAST_END_KEY = "tidepool_last_end"

# Two months, counted as 30-day months
RETENTION_WINDOW = timedelta(days=60)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MILLI = timedelta(milliseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // ONE_MILLI


def from_millis(value: int) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def floor_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so ``from_millis(to_millis(v)) == v``."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


# ---------------------------------------------------------------------------
# Key-value persistence
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    def get_int(self, key: str, default: int = 0) -> int: ...

    def put_int(self, key: str, value: int) -> None: ...


class MemoryStore:
    """Dict-backed store; state is lost with the process."""

    def __init__(self, initial: dict[str, int] | None = None) -> None:
        self._data: dict[str, int] = dict(initial or {})

    def get_int(self, key: str, default: int = 0) -> int:
        return self._data.get(key, default)

    def put_int(self, key: str, value: int) -> None:
        self._data[key] = int(value)


class JsonFileStore:
    """Flat JSON object on disk, rewritten atomically on every put."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read state file %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get_int(self, key: str, default: int = 0) -> int:
        with self._lock:
            value = self._load().get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-integer %s=%r in %s", key, value, self._path)
            return default

    def put_int(self, key: str, value: int) -> None:
        with self._lock:
            data = self._load()
            data[key] = int(value)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".state-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise


# ---------------------------------------------------------------------------
# Watermark
# ---------------------------------------------------------------------------


class WatermarkStore:
    """Monotonic, retention-clamped "last uploaded end" timestamp."""

    def __init__(
        self,
        store: KeyValueStore,
        reporter: "StatusReporter | None" = None,
        clock: Callable[[], datetime] = utc_now,
        retention: timedelta = RETENTION_WINDOW,
    ) -> None:
        self._store = store
        self._reporter = reporter
        self._clock = clock
        self._retention = retention

    def floor(self) -> datetime:
        """Oldest point the watermark may ever report."""
        return self._clock() - self._retention

    def read(self) -> datetime:
        """Return ``max(persisted, now - retention)``."""
        persisted = self._store.get_int(LAST_END_KEY, 0)
        floor_ms = to_millis(self.floor())
        return from_millis(max(persisted, floor_ms))

    def advance(self, candidate: datetime) -> bool:
        """Persist ``candidate`` if it is later than the current watermark.

        Returns:
            True if the watermark moved.
        """
        current = self.read()
        if to_millis(candidate) <= to_millis(current):
            logger.debug(
                "Cannot set last end to %s vs %s",
                candidate.isoformat(),
                current.isoformat(),
            )
            return False

        self._store.put_int(LAST_END_KEY, to_millis(candidate))
        logger.debug("Updating last end to %s", candidate.isoformat())
        if self._reporter is not None:
            friendly = candidate.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
            self._reporter.report(f"Marking uploaded data up to {friendly}")
        return True
