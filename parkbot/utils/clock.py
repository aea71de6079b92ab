"""Time source and deferred-timer abstractions.

Every component that needs "now" receives a ``Clock``; every component that
needs to run something later receives a ``TimerFactory``. Production wiring
uses the wall clock and ``threading.Timer``; tests use ``ManualClock`` and
``ManualTimerFactory`` so that time only moves when the test says so.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol
from zoneinfo import ZoneInfo


def seconds_until(target: datetime, now: datetime) -> float:
    """Elapsed seconds from ``now`` to ``target``, counted on the UTC timeline.

    Subtracting two datetimes that share a ``ZoneInfo`` ignores any offset
    change between them, so both ends are converted first.
    """
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class TimerFactory(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class SystemClock:
    """Wall clock pinned to the configured civil timezone."""

    def __init__(self, timezone_name: str) -> None:
        self._zone = ZoneInfo(timezone_name)

    def now(self) -> datetime:
        return datetime.now(self._zone)


class ThreadingTimerFactory:
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, delay_seconds), callback)
        timer.daemon = True
        timer.start()
        return timer


class ManualClock:
    """Settable clock for deterministic tests and simulations."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware datetime")
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._now = self._now + delta
            return self._now


@dataclass
class ManualTimer:
    due_at: datetime
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualTimerFactory:
    """Collects timers and fires them only from ``run_due``."""

    clock: ManualClock
    timers: list[ManualTimer] = field(default_factory=list)

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(
            due_at=self.clock.now().astimezone(timezone.utc)
            + timedelta(seconds=max(0.0, delay_seconds)),
            callback=callback,
        )
        self.timers.append(timer)
        return timer

    def pending(self) -> list[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

    def run_due(self) -> int:
        """Fire every pending timer whose due instant has been reached."""
        fired = 0
        now = self.clock.now()
        for timer in sorted(self.pending(), key=lambda item: item.due_at):
            if timer.due_at <= now and not timer.cancelled and not timer.fired:
                timer.fired = True
                timer.callback()
                fired += 1
        return fired
