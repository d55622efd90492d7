"""Tests for the wake-lock guard."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from tidesync.uploader.wakelock import InProcessWakeLock, WakeLockGuard


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timed_lock(clock: FakeClock) -> InProcessWakeLock:
    return InProcessWakeLock(tag="t", clock=clock)


class TestInProcessWakeLock:
    def test_acquire_then_expire(self, timed_lock: InProcessWakeLock, clock: FakeClock) -> None:
        timed_lock.acquire(30_000)
        assert timed_lock.is_held()
        clock.now += 30.0
        assert not timed_lock.is_held()

    def test_release_when_not_held_raises(self, timed_lock: InProcessWakeLock) -> None:
        with pytest.raises(RuntimeError):
            timed_lock.release()


class TestWakeLockGuard:
    def test_extend_acquires(self, timed_lock: InProcessWakeLock) -> None:
        guard = WakeLockGuard(timed_lock)
        guard.extend(30_000)
        assert guard.is_held()
        assert timed_lock.acquire_count == 1

    def test_release_releases(self, timed_lock: InProcessWakeLock) -> None:
        guard = WakeLockGuard(timed_lock)
        guard.extend(30_000)
        guard.release()
        assert not guard.is_held()

    def test_release_when_not_held_is_silent(self, timed_lock: InProcessWakeLock) -> None:
        guard = WakeLockGuard(timed_lock)
        guard.release()
        guard.release()
        assert not guard.is_held()

    def test_re_extend_resets_rather_than_adds(
        self, timed_lock: InProcessWakeLock, clock: FakeClock
    ) -> None:
        guard = WakeLockGuard(timed_lock)
        guard.extend(30_000)
        clock.now += 20.0
        guard.extend(30_000)

        clock.now += 29.0
        assert guard.is_held()
        clock.now += 1.0
        assert not guard.is_held()
        assert timed_lock.acquire_count == 2

    def test_re_extend_releases_first(self) -> None:
        resource = MagicMock()
        resource.is_held.return_value = True
        guard = WakeLockGuard(resource)

        guard.extend(60_000)

        assert [c[0] for c in resource.method_calls] == ["is_held", "release", "acquire"]
        resource.acquire.assert_called_once_with(60_000)

    def test_release_errors_are_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        resource = MagicMock()
        resource.is_held.return_value = True
        resource.release.side_effect = RuntimeError("under-locked")
        guard = WakeLockGuard(resource)

        with caplog.at_level(logging.ERROR, logger="tidesync.uploader.wakelock"):
            guard.release()

        assert "Error releasing wakelock" in caplog.text

    def test_default_resource_is_in_process(self) -> None:
        assert isinstance(WakeLockGuard().resource, InProcessWakeLock)
