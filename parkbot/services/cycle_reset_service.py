"""Weekly cycle reset at the cutover instant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from threading import Lock
from typing import Optional

from parkbot.domain.booking_window import current_cycle, ending_cycle, latest_cutover, next_cutover
from parkbot.domain.constraints import BookingPolicy
from parkbot.repository.data_repository import DataRepository
from parkbot.utils.clock import Clock, TimerFactory, TimerHandle, seconds_until
from parkbot.utils.locks import DateLockRegistry
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class CycleResetResult:
    start_date: Optional[date]
    end_date: date
    reservations_cleared: int
    waitlist_cleared: int

    def to_api_dict(self) -> dict[str, object]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat(),
            "reservations_cleared": self.reservations_cleared,
            "waitlist_cleared": self.waitlist_cleared,
        }


class CycleResetService:
    """Clears the cycle that the weekly cutover just closed.

    The timer is a convenience, not a requirement: ``ensure_current`` is
    called before every engine request and catches up on any cutover this
    process has not processed yet (timer late, or process offline across the
    cutover), so the ending cycle is always wiped before anything is booked
    into the cycle that just opened.
    """

    def __init__(
        self,
        *,
        repository: DataRepository,
        policy: BookingPolicy,
        clock: Clock,
        timers: TimerFactory,
        locks: DateLockRegistry,
    ) -> None:
        self._repository = repository
        self._policy = policy
        self._clock = clock
        self._timers = timers
        self._locks = locks
        self._run_lock = Lock()
        self._last_processed_cutover: Optional[datetime] = None
        self._handle: Optional[TimerHandle] = None

    @property
    def last_processed_cutover(self) -> Optional[datetime]:
        return self._last_processed_cutover

    def reset_ending_cycle(self, now: Optional[datetime] = None) -> CycleResetResult:
        """Delete reservations and waitlist rows of the cycle closed by the latest cutover."""
        reference = now or self._clock.now()
        cycle = ending_cycle(reference, self._policy)
        with self._run_lock:
            with self._locks.hold_many(cycle.workdays()):
                reservations, waitlist = self._repository.delete_between(cycle.monday, cycle.friday)
            self._mark_processed(latest_cutover(reference, self._policy))
        logger.info(
            "Cycle reset: cleared %s reservations and %s waitlist entries for %s - %s",
            reservations,
            waitlist,
            cycle.monday,
            cycle.friday,
        )
        return CycleResetResult(cycle.monday, cycle.friday, reservations, waitlist)

    def purge_expired(self, before: date) -> CycleResetResult:
        """Delete every reservation and waitlist row dated before ``before``."""
        stale_dates = self._repository.list_dates_before(before)
        with self._locks.hold_many(stale_dates):
            reservations, waitlist = self._repository.delete_before(before)
        self._locks.forget_before(before)
        if reservations or waitlist:
            logger.info(
                "Purged %s reservations and %s waitlist entries dated before %s",
                reservations,
                waitlist,
                before,
            )
        return CycleResetResult(None, before, reservations, waitlist)

    def ensure_current(self, now: Optional[datetime] = None) -> Optional[CycleResetResult]:
        """Catch up on an unprocessed cutover; returns None when nothing was due."""
        reference = now or self._clock.now()
        cutover = latest_cutover(reference, self._policy)
        with self._run_lock:
            if self._last_processed_cutover is not None and self._last_processed_cutover >= cutover:
                return None
            if self._last_processed_cutover is not None:
                logger.warning("Cutover %s was not processed on time; resetting now", cutover.isoformat())
            result = self.purge_expired(current_cycle(reference, self._policy).monday)
            self._mark_processed(cutover)
        return result

    def _mark_processed(self, cutover: datetime) -> None:
        if self._last_processed_cutover is None or cutover > self._last_processed_cutover:
            self._last_processed_cutover = cutover

    def start(self) -> None:
        """Arm the timer for the next cutover."""
        now = self._clock.now()
        target = next_cutover(now, self._policy)
        self._handle = self._timers.schedule(seconds_until(target, now), self._on_timer)
        logger.info("Next cycle reset scheduled for %s", target.isoformat())

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_timer(self) -> None:
        try:
            self.reset_ending_cycle()
        except Exception:
            logger.exception("Scheduled cycle reset failed")
        finally:
            self.start()
