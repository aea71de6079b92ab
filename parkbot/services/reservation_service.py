"""Reservation engine: the command surface used by the intent layer.

Routing for a booking request:

1. the booking-window validator accepts or rejects the date;
2. inside the fairness window right after the cutover the request joins the
   lottery buffer for its date;
3. otherwise the allocator tries to reserve a spot, and on exhaustion the
   user is appended to the date's waitlist.

Every mutation of a date's rows runs under that date's lock. State is
committed before any notification is attempted.
"""

from __future__ import annotations

import random
from datetime import date
from typing import Iterable, Optional, Sequence

from parkbot.domain.booking_window import check_booking_window, current_cycle
from parkbot.domain.constraints import BookingPolicy
from parkbot.domain.models import (
    FixedSpotRelease,
    LotteryQueueEntry,
    Reservation,
    SpotStatus,
    SystemStats,
    WaitlistEntry,
    sort_spot_ids,
)
from parkbot.domain.outcomes import (
    Confirmed,
    FixedReleaseAccepted,
    FixedReleaseOutcome,
    Handover,
    RejectionReason,
    Rejected,
    Released,
    ReleaseOutcome,
    ReservationOutcome,
    WaitlistOutcome,
)
from parkbot.repository.data_repository import DataRepository, UserAlreadyBookedError
from parkbot.services.allocation_service import SpotAllocator
from parkbot.services.cycle_reset_service import CycleResetResult, CycleResetService
from parkbot.services.fixed_spot_service import FixedSpotOverlay
from parkbot.services.lottery_service import LotteryQueueScheduler
from parkbot.services.notification_service import NotificationDispatcher, Notifier
from parkbot.services.waitlist_service import WaitlistService
from parkbot.utils.clock import Clock, SystemClock, ThreadingTimerFactory, TimerFactory
from parkbot.utils.config import Settings, get_settings
from parkbot.utils.locks import DateLockRegistry
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


def _describe_day(target_date: date) -> str:
    return target_date.strftime("%A %d/%m")


class ReservationEngine:
    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        timers: Optional[TimerFactory] = None,
        notifier: Optional[Notifier] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._policy = BookingPolicy.from_settings(self._settings)
        self._repository = repository or DataRepository(self._settings)
        self._clock = clock or SystemClock(self._settings.timezone)
        self._timers = timers or ThreadingTimerFactory()
        self._locks = DateLockRegistry()
        self._dispatcher = NotificationDispatcher(
            notifier=notifier,
            supervisor_destination=self._settings.supervisor_user_id,
        )
        if rng is None:
            rng = random.Random(self._settings.lottery_random_seed)

        self._allocator = SpotAllocator(self._repository)
        self._waitlist = WaitlistService(self._repository, self._locks)
        self._fixed_spots = FixedSpotOverlay(self._repository)
        self._lottery = LotteryQueueScheduler(
            policy=self._policy,
            clock=self._clock,
            timers=self._timers,
            locks=self._locks,
            dispatcher=self._dispatcher,
            resolver=self._resolve_lottery_entry,
            rng=rng,
        )
        self._cycle_reset = CycleResetService(
            repository=self._repository,
            policy=self._policy,
            clock=self._clock,
            timers=self._timers,
            locks=self._locks,
        )

    @property
    def lottery(self) -> LotteryQueueScheduler:
        return self._lottery

    @property
    def clock(self) -> Clock:
        return self._clock

    def start(self) -> None:
        self._cycle_reset.ensure_current()
        self._cycle_reset.start()

    def shutdown(self) -> None:
        self._cycle_reset.stop()
        self._lottery.shutdown()

    def _today(self) -> date:
        return self._clock.now().date()

    def _catch_up(self) -> None:
        """Recompute timer-driven state from the wall clock."""
        now = self._clock.now()
        self._cycle_reset.ensure_current(now)
        self._lottery.resolve_due(now)

    # --- Booking -------------------------------------------------------

    def request_reservation(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        join_waitlist: bool = True,
    ) -> ReservationOutcome:
        self._catch_up()
        now = self._clock.now()
        verdict = check_booking_window(now, target_date, self._policy)
        if isinstance(verdict, Rejected):
            logger.info(
                "Reservation by %s for %s rejected: %s",
                user_id,
                target_date,
                verdict.reason.value,
            )
            return verdict

        with self._locks.hold(target_date):
            if self._lottery.is_window_open(now):
                return self._submit_to_lottery_locked(user_id, target_date, display_name, reply_to)
            if self._lottery.has_buffer(target_date):
                self._lottery.close(target_date)
            return self._book_locked(user_id, target_date, display_name, join_waitlist)

    def _submit_to_lottery_locked(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str],
        reply_to: Optional[str],
    ) -> ReservationOutcome:
        existing = self._repository.get_reservation(user_id, target_date)
        if existing is not None:
            return Rejected(
                RejectionReason.DUPLICATE_BOOKING,
                f"already holds spot {existing.spot_id} for {_describe_day(target_date)}",
            )
        return self._lottery.submit(
            user_id=user_id,
            target_date=target_date,
            reply_to=reply_to or user_id,
            display_name=display_name,
        )

    def request_reservations(
        self,
        user_id: str,
        dates: Iterable[date],
        display_name: Optional[str] = None,
        reply_to: Optional[str] = None,
        join_waitlist: bool = True,
    ) -> dict[date, ReservationOutcome]:
        return {
            target_date: self.request_reservation(
                user_id,
                target_date,
                display_name=display_name,
                reply_to=reply_to,
                join_waitlist=join_waitlist,
            )
            for target_date in sorted(set(dates))
        }

    def _book_locked(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str],
        join_waitlist: bool,
    ) -> ReservationOutcome:
        """Allocate or waitlist; the caller holds the date lock."""
        existing = self._repository.get_reservation(user_id, target_date)
        if existing is not None:
            return Rejected(
                RejectionReason.DUPLICATE_BOOKING,
                f"already holds spot {existing.spot_id} for {_describe_day(target_date)}",
            )
        try:
            reservation = self._allocator.allocate(user_id, target_date, display_name)
        except UserAlreadyBookedError:
            return Rejected(RejectionReason.DUPLICATE_BOOKING, "already holds a spot for that date")
        if reservation is not None:
            # A waitlisted user who gets a spot by asking again leaves the queue.
            self._repository.remove_waitlist_entry(user_id, target_date)
            return Confirmed(date=target_date, spot_id=reservation.spot_id)
        if not join_waitlist:
            return Rejected(
                RejectionReason.NO_SPOT_AVAILABLE,
                f"no spots left for {_describe_day(target_date)}",
            )
        return self._waitlist.enqueue(user_id, target_date, display_name)

    def _resolve_lottery_entry(self, entry: LotteryQueueEntry) -> ReservationOutcome:
        return self._book_locked(entry.user_id, entry.date, entry.display_name, join_waitlist=True)

    # --- Release and waitlist hand-over --------------------------------

    def release_reservation(self, user_id: str, target_date: date) -> ReleaseOutcome:
        self._catch_up()
        with self._locks.hold(target_date):
            reservation = self._repository.get_reservation(user_id, target_date)
            if reservation is None:
                return Rejected(
                    RejectionReason.NO_ACTIVE_RESERVATION,
                    f"no reservation for {_describe_day(target_date)}",
                )
            self._repository.delete_reservation(user_id, target_date)
            logger.info("User %s released spot %s on %s", user_id, reservation.spot_id, target_date)
            handover = self._hand_over_locked(target_date, reservation.spot_id)

        if handover is not None:
            self._announce_handover(handover)
        return Released(
            date=target_date,
            spot_id=reservation.spot_id,
            reassigned_to=handover.user_id if handover else None,
        )

    def release_reservations(self, user_id: str, dates: Iterable[date]) -> dict[date, ReleaseOutcome]:
        return {
            target_date: self.release_reservation(user_id, target_date)
            for target_date in sorted(set(dates))
        }

    def _hand_over_locked(self, target_date: date, spot_id: Optional[str]) -> Optional[Handover]:
        """Give a free spot to the waitlist head; the caller holds the date lock.

        The head only leaves the waitlist once a reservation is committed, so
        a failed hand-over keeps their place.
        """
        head = self._waitlist.peek_head(target_date)
        if head is None:
            return None
        if target_date < self._today():
            return None
        try:
            reservation = self._allocator.allocate(
                head.user_id,
                target_date,
                head.display_name,
                preferred_spot_id=spot_id,
            )
        except UserAlreadyBookedError:
            # Stale entry: the head already has a spot, so it should not be queued.
            self._repository.remove_waitlist_entry(head.user_id, target_date)
            return self._hand_over_locked(target_date, spot_id)
        if reservation is None:
            return None
        self._repository.remove_waitlist_entry(head.user_id, target_date)
        logger.info(
            "Spot %s on %s handed to waitlisted user %s",
            reservation.spot_id,
            target_date,
            head.user_id,
        )
        return Handover(date=target_date, spot_id=reservation.spot_id, user_id=head.user_id)

    def _announce_handover(self, handover: Handover) -> None:
        self._dispatcher.notify(
            handover.user_id,
            f"Good news: spot {handover.spot_id} freed up for "
            f"{_describe_day(handover.date)} and is now yours.",
        )

    def _serve_waitlist(self, target_date: date) -> list[Handover]:
        """Hand out every currently free spot on a date to waiting users."""
        handovers: list[Handover] = []
        with self._locks.hold(target_date):
            while True:
                handover = self._hand_over_locked(target_date, None)
                if handover is None:
                    break
                handovers.append(handover)
        for handover in handovers:
            self._announce_handover(handover)
        return handovers

    def drain_waitlists(self) -> list[Handover]:
        """Serve every upcoming waitlist from whatever inventory is free now."""
        self._catch_up()
        today = self._today()
        horizon = current_cycle(self._clock.now(), self._policy).next.friday
        handovers: list[Handover] = []
        for target_date in self._repository.list_waitlisted_dates(today, horizon):
            handovers.extend(self._serve_waitlist(target_date))
        return handovers

    # --- Waitlist ------------------------------------------------------

    def join_waitlist(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> WaitlistOutcome:
        """Queue for a date whose spots are all taken.

        Inside the fairness window the request joins the lottery like any other
        and a losing draw lands on the waitlist in shuffled order.
        """
        self._catch_up()
        now = self._clock.now()
        verdict = check_booking_window(now, target_date, self._policy)
        if isinstance(verdict, Rejected):
            return verdict

        with self._locks.hold(target_date):
            if self._lottery.is_window_open(now):
                return self._submit_to_lottery_locked(user_id, target_date, display_name, reply_to)
            if self._lottery.has_buffer(target_date):
                self._lottery.close(target_date)
            existing = self._repository.get_reservation(user_id, target_date)
            if existing is not None:
                return Rejected(
                    RejectionReason.DUPLICATE_BOOKING,
                    f"already holds spot {existing.spot_id} for {_describe_day(target_date)}",
                )
            if self._allocator.candidates(target_date):
                return Rejected(
                    RejectionReason.SPOT_AVAILABLE,
                    f"spots are still free for {_describe_day(target_date)}, request a reservation instead",
                )
            return self._waitlist.enqueue(user_id, target_date, display_name)

    def leave_waitlist(self, user_id: str, target_date: date) -> WaitlistOutcome:
        return self._waitlist.remove(user_id, target_date)

    def waitlist(self, target_date: date) -> list[WaitlistEntry]:
        return self._waitlist.entries(target_date)

    # --- Fixed spots ---------------------------------------------------

    def release_fixed_spot(self, spot_id: str, start_date: date, end_date: date) -> FixedReleaseOutcome:
        self._catch_up()
        today = self._today()
        recorded = self._fixed_spots.release(spot_id, start_date, end_date, today)
        if isinstance(recorded, Rejected):
            return recorded

        handovers: list[Handover] = []
        first_day = max(start_date, today)
        for target_date in self._repository.list_waitlisted_dates(first_day, end_date):
            with self._locks.hold(target_date):
                if not self._allocator.is_allocatable(target_date, spot_id):
                    continue
                handover = self._hand_over_locked(target_date, spot_id)
            if handover is not None:
                self._announce_handover(handover)
                handovers.append(handover)

        return FixedReleaseAccepted(
            spot_id=spot_id,
            start_date=start_date,
            end_date=end_date,
            handovers=tuple(handovers),
        )

    def withdraw_fixed_spot_release(self, spot_id: str) -> int:
        return self._fixed_spots.withdraw(spot_id, self._today())

    def set_fixed_spots(self, spot_ids: Sequence[str]) -> list[str]:
        return self._fixed_spots.set_fixed_spots(spot_ids)

    def fixed_spots(self) -> list[str]:
        return self._fixed_spots.fixed_spots()

    def fixed_spot_releases(self, spot_id: Optional[str] = None) -> list[FixedSpotRelease]:
        return self._fixed_spots.releases(spot_id)

    # --- Inventory -----------------------------------------------------

    def set_flex_spots(self, spot_ids: Sequence[str]) -> list[str]:
        """Replace the flex pool; existing reservations stay valid."""
        cleaned = [spot_id.strip() for spot_id in spot_ids if spot_id.strip()]
        self._repository.replace_flex_spots(cleaned)
        logger.info("Flex pool replaced with %s spots", len(cleaned))
        self.drain_waitlists()
        return self.flex_spots()

    def set_spot_active(self, spot_id: str, active: bool) -> bool:
        updated = self._repository.set_spot_active(spot_id, active)
        if updated and active:
            self.drain_waitlists()
        return updated

    def flex_spots(self) -> list[str]:
        return [spot.spot_id for spot in self._repository.list_flex_spots()]

    # --- Status --------------------------------------------------------

    def day_status(self, target_date: date) -> list[SpotStatus]:
        reservations = {
            reservation.spot_id: reservation
            for reservation in self._repository.list_reservations_for_date(target_date)
        }
        flex_ids = self.flex_spots()
        released_ids = [
            spot_id
            for spot_id in self._fixed_spots.released_on(target_date)
            if spot_id not in flex_ids
        ]

        rows: list[SpotStatus] = []
        for kind, spot_ids in (("flex", flex_ids), ("released_fixed", released_ids)):
            for spot_id in spot_ids:
                reservation = reservations.pop(spot_id, None)
                rows.append(self._status_row(spot_id, kind, reservation))
        # Reservations on spots that left the pool after being booked remain valid.
        for spot_id in sort_spot_ids(reservations):
            rows.append(self._status_row(spot_id, "retired", reservations[spot_id]))
        return rows

    @staticmethod
    def _status_row(spot_id: str, kind: str, reservation: Optional[Reservation]) -> SpotStatus:
        if reservation is None:
            return SpotStatus(spot_id=spot_id, kind=kind)
        return SpotStatus(
            spot_id=spot_id,
            kind=kind,
            occupant_id=reservation.user_id,
            occupant_name=reservation.display_name,
        )

    def displayed_cycle_dates(self) -> list[date]:
        return current_cycle(self._clock.now(), self._policy).workdays()

    def week_status(self) -> dict[date, list[SpotStatus]]:
        self._catch_up()
        return {target_date: self.day_status(target_date) for target_date in self.displayed_cycle_dates()}

    def user_reservations(self, user_id: str) -> list[Reservation]:
        return self._repository.list_user_reservations(user_id, from_date=self._today())

    def system_stats(self) -> SystemStats:
        return SystemStats(
            flex_spots=len(self.flex_spots()),
            fixed_spots=len(self.fixed_spots()),
            reservations=self._repository.count_reservations(),
            waitlisted=self._repository.count_waitlist(),
            queued=self._lottery.queued_count(),
        )

    def run_cycle_reset(self) -> CycleResetResult:
        return self._cycle_reset.reset_ending_cycle()

    def clear_all(self) -> tuple[int, int]:
        """Drop every reservation and waitlist entry, keeping inventory and releases."""
        reservations, waitlist = self._repository.clear_all()
        logger.warning("Cleared %s reservations and %s waitlist entries", reservations, waitlist)
        return reservations, waitlist
