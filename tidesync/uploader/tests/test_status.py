"""Tests for the status reporter."""

from __future__ import annotations

from tidesync.uploader.status import StatusEvent, StatusReporter


class TestStatusReporter:
    def test_history_is_bounded(self) -> None:
        reporter = StatusReporter(history_size=3)
        for i in range(5):
            reporter.report(f"m{i}")
        assert reporter.messages() == ["m2", "m3", "m4"]
        assert reporter.last == "m4"

    def test_last_is_none_when_empty(self) -> None:
        assert StatusReporter().last is None

    def test_subscribers_receive_events(self) -> None:
        reporter = StatusReporter()
        seen: list[StatusEvent] = []
        unsubscribe = reporter.subscribe(seen.append)

        reporter.report("Connecting")
        unsubscribe()
        reporter.report("Connected")

        assert [e.message for e in seen] == ["Connecting"]

    def test_failing_subscriber_does_not_break_report(self) -> None:
        reporter = StatusReporter()
        seen: list[str] = []

        def broken(_event: StatusEvent) -> None:
            raise ValueError("ui gone")

        reporter.subscribe(broken)
        reporter.subscribe(lambda e: seen.append(e.message))

        reporter.report("Uploading")

        assert seen == ["Uploading"]
        assert reporter.last == "Uploading"
