"""Settable clock for deterministic scheduling tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

START_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class ManualClock:
    """
    Clock that only moves when told to.

    Example:
        >>> clock = ManualClock()
        >>> clock.advance(2)
        >>> clock() == START_TIME + timedelta(seconds=2)
        True
    """

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)
