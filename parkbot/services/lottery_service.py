"""Fairness-window lottery for the rush right after the weekly cutover.

Requests arriving inside the window are buffered per target date instead of
being allocated on arrival, so message-arrival order (network jitter, scripted
clients, clock skew) cannot bias who gets a spot. When the window closes the
date's buffer is shuffled and resolved one entry at a time, inside the date's
critical section, through the same allocate-or-waitlist routine a plain
request uses. Every requester is then told their outcome exactly once.

Buffers live in memory only; a restart during the window loses them.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date, datetime
from threading import RLock
from typing import Callable, Optional

from parkbot.domain.booking_window import fairness_window_close, in_fairness_window
from parkbot.domain.constraints import BookingPolicy
from parkbot.domain.models import LotteryQueueEntry
from parkbot.domain.outcomes import (
    Confirmed,
    Queued,
    RejectionReason,
    Rejected,
    ReservationOutcome,
    Waitlisted,
)
from parkbot.services.notification_service import NotificationDispatcher
from parkbot.utils.clock import Clock, TimerFactory, TimerHandle, seconds_until
from parkbot.utils.locks import DateLockRegistry
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)

Resolver = Callable[[LotteryQueueEntry], ReservationOutcome]


@dataclass(frozen=True)
class LotteryResult:
    entry: LotteryQueueEntry
    outcome: ReservationOutcome


@dataclass(frozen=True)
class QueueStatus:
    date: date
    total: int
    closes_at: datetime
    close_scheduled: bool


def _describe_day(target_date: date) -> str:
    return target_date.strftime("%A %d/%m")


def format_lottery_message(result: LotteryResult) -> str:
    header = f"Lottery result for {_describe_day(result.entry.date)}: "
    outcome = result.outcome
    if isinstance(outcome, Confirmed):
        return header + f"you got spot {outcome.spot_id}."
    if isinstance(outcome, Waitlisted):
        return header + (
            "every spot was assigned, you are number "
            f"{outcome.position} on the waitlist and will be notified if one frees up."
        )
    if isinstance(outcome, Rejected):
        return header + (outcome.detail or outcome.reason.value)
    return header + "your request could not be processed."


class LotteryQueueScheduler:
    def __init__(
        self,
        *,
        policy: BookingPolicy,
        clock: Clock,
        timers: TimerFactory,
        locks: DateLockRegistry,
        dispatcher: NotificationDispatcher,
        resolver: Resolver,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._policy = policy
        self._clock = clock
        self._timers = timers
        self._locks = locks
        self._dispatcher = dispatcher
        self._resolver = resolver
        self._rng = rng or random.Random()
        self._guard = RLock()
        self._buffers: dict[date, list[LotteryQueueEntry]] = {}
        self._closes_at: dict[date, datetime] = {}
        self._handles: dict[date, TimerHandle] = {}

    def is_window_open(self, now: Optional[datetime] = None) -> bool:
        return in_fairness_window(now or self._clock.now(), self._policy)

    def has_buffer(self, target_date: date) -> bool:
        with self._guard:
            return target_date in self._buffers

    def submit(
        self,
        user_id: str,
        target_date: date,
        reply_to: str,
        display_name: Optional[str] = None,
    ) -> ReservationOutcome:
        """Buffer a request for resolution at window close."""
        now = self._clock.now()
        with self._guard:
            buffer = self._buffers.get(target_date)
            if buffer is None:
                buffer = []
                closes_at = fairness_window_close(now, self._policy)
                self._buffers[target_date] = buffer
                self._closes_at[target_date] = closes_at
                delay = seconds_until(closes_at, now)
                self._handles[target_date] = self._timers.schedule(
                    delay,
                    lambda: self._on_timer(target_date),
                )
                logger.info("Lottery opened for %s, closing at %s", target_date, closes_at.isoformat())

            for index, existing in enumerate(buffer, start=1):
                if existing.user_id == user_id:
                    return Rejected(
                        RejectionReason.ALREADY_QUEUED,
                        "already in the lottery for that date",
                        position=index,
                    )

            buffer.append(
                LotteryQueueEntry(
                    user_id=user_id,
                    date=target_date,
                    submitted_at=now,
                    reply_to=reply_to,
                    display_name=display_name,
                )
            )
            position = len(buffer)
            closes_at = self._closes_at[target_date]

        logger.info("User %s queued for %s lottery at position %s", user_id, target_date, position)
        return Queued(date=target_date, position=position, resolves_at=closes_at.isoformat())

    def _on_timer(self, target_date: date) -> None:
        try:
            self.close(target_date)
        except Exception:
            logger.exception("Lottery resolution for %s failed", target_date)

    def close(self, target_date: date) -> list[LotteryResult]:
        """Shuffle and resolve one date's buffer; a second call is a no-op."""
        with self._locks.hold(target_date):
            with self._guard:
                buffer = self._buffers.pop(target_date, None)
                self._closes_at.pop(target_date, None)
                handle = self._handles.pop(target_date, None)
            if handle is not None:
                handle.cancel()
            if not buffer:
                return []

            order = list(buffer)
            self._rng.shuffle(order)
            logger.info("Resolving %s lottery with %s requests", target_date, len(order))
            results = [LotteryResult(entry, self._resolve_entry(entry)) for entry in order]

        self._announce(target_date, results)
        return results

    def _resolve_entry(self, entry: LotteryQueueEntry) -> ReservationOutcome:
        try:
            return self._resolver(entry)
        except Exception:
            logger.exception(
                "Lottery entry for user %s on %s could not be resolved",
                entry.user_id,
                entry.date,
            )
            return Rejected(RejectionReason.INTERNAL_ERROR, "your request could not be processed.")

    def _announce(self, target_date: date, results: list[LotteryResult]) -> None:
        for result in results:
            self._dispatcher.notify(result.entry.reply_to, format_lottery_message(result))

        assigned = sum(1 for result in results if isinstance(result.outcome, Confirmed))
        waitlisted = sum(1 for result in results if isinstance(result.outcome, Waitlisted))
        self._dispatcher.notify_supervisor(
            f"Lottery summary {_describe_day(target_date)}: "
            f"{len(results)} requests, {assigned} assigned, {waitlisted} waitlisted."
        )

    def resolve_due(self, now: Optional[datetime] = None) -> list[LotteryResult]:
        """Resolve buffers whose close instant passed without the timer firing."""
        reference = now or self._clock.now()
        with self._guard:
            due = [day for day, closes_at in self._closes_at.items() if closes_at <= reference]
        results: list[LotteryResult] = []
        for target_date in sorted(due):
            logger.warning("Lottery for %s is past its close time; resolving now", target_date)
            results.extend(self.close(target_date))
        return results

    def flush(self) -> list[LotteryResult]:
        """Resolve every open buffer immediately."""
        with self._guard:
            dates = sorted(self._buffers)
        results: list[LotteryResult] = []
        for target_date in dates:
            results.extend(self.close(target_date))
        return results

    def clear(self) -> int:
        """Drop every buffer without resolving it; returns the dropped request count."""
        with self._guard:
            dropped = sum(len(buffer) for buffer in self._buffers.values())
            handles = list(self._handles.values())
            self._buffers.clear()
            self._closes_at.clear()
            self._handles.clear()
        for handle in handles:
            handle.cancel()
        logger.warning("Lottery buffers cleared, %s requests dropped", dropped)
        return dropped

    def shutdown(self) -> None:
        self.flush()

    def queue_status(self, target_date: date) -> Optional[QueueStatus]:
        with self._guard:
            buffer = self._buffers.get(target_date)
            if buffer is None:
                return None
            return QueueStatus(
                date=target_date,
                total=len(buffer),
                closes_at=self._closes_at[target_date],
                close_scheduled=target_date in self._handles,
            )

    def all_queues(self) -> dict[date, list[LotteryQueueEntry]]:
        with self._guard:
            return {day: list(buffer) for day, buffer in sorted(self._buffers.items())}

    def queued_count(self) -> int:
        with self._guard:
            return sum(len(buffer) for buffer in self._buffers.values())
