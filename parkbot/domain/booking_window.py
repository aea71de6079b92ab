"""Pure booking-window rules.

Nothing in this module reads a clock or touches storage: every function takes
``now`` explicitly (a timezone-aware datetime) plus the ``BookingPolicy``.

A cycle is the Monday-Friday span users book into. The weekly cutover
(Friday 17:00 by default) ends the running cycle: from that instant, and all
through the weekend, the upcoming Monday-Friday is the active cycle. The
cycle after the active one stays locked until the active cycle's own cutover.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from parkbot.domain.constraints import BookingPolicy
from parkbot.domain.models import Cycle
from parkbot.domain.outcomes import RejectionReason, Rejected, WindowOpen, WindowVerdict


def _local(now: datetime, policy: BookingPolicy) -> datetime:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return now.astimezone(policy.zone)


def is_workday(target_date: date) -> bool:
    return target_date.weekday() < 5


def cycle_of(target_date: date) -> Cycle:
    """The Monday-Friday span whose week contains ``target_date``."""
    return Cycle(target_date - timedelta(days=target_date.weekday()))


def cutover_for(cycle: Cycle, policy: BookingPolicy) -> datetime:
    """The instant that closes ``cycle`` and opens the one after it."""
    cutover_day = cycle.monday + timedelta(days=policy.cutover_weekday)
    return datetime.combine(
        cutover_day,
        time(policy.cutover_hour, policy.cutover_minute),
        tzinfo=policy.zone,
    )


def current_cycle(now: datetime, policy: BookingPolicy) -> Cycle:
    local_now = _local(now, policy)
    today = local_now.date()
    week = cycle_of(today)
    if not is_workday(today) or local_now >= cutover_for(week, policy):
        return week.next
    return week


def latest_cutover(now: datetime, policy: BookingPolicy) -> datetime:
    """Most recent cutover instant at or before ``now``."""
    local_now = _local(now, policy)
    candidate = cutover_for(cycle_of(local_now.date()), policy)
    if candidate > local_now:
        candidate = cutover_for(cycle_of(local_now.date()).previous, policy)
    return candidate


def next_cutover(now: datetime, policy: BookingPolicy) -> datetime:
    """First cutover instant strictly after ``now``."""
    local_now = _local(now, policy)
    candidate = cutover_for(cycle_of(local_now.date()), policy)
    if candidate <= local_now:
        candidate = cutover_for(cycle_of(local_now.date()).next, policy)
    return candidate


def ending_cycle(now: datetime, policy: BookingPolicy) -> Cycle:
    """The cycle closed by the most recent cutover."""
    return cycle_of(latest_cutover(now, policy).date())


def fairness_window_close(now: datetime, policy: BookingPolicy) -> datetime:
    return latest_cutover(now, policy) + policy.fairness_window


def in_fairness_window(now: datetime, policy: BookingPolicy) -> bool:
    local_now = _local(now, policy)
    opened_at = latest_cutover(local_now, policy)
    return opened_at <= local_now < opened_at + policy.fairness_window


def check_booking_window(
    now: datetime,
    target_date: date,
    policy: BookingPolicy,
) -> WindowVerdict:
    """Decide whether ``target_date`` may be booked at ``now``."""
    local_now = _local(now, policy)
    if target_date < local_now.date():
        return Rejected(RejectionReason.OUT_OF_RANGE, "date is in the past")
    if not is_workday(target_date):
        return Rejected(RejectionReason.WEEKEND_DATE, "only Monday to Friday can be booked")

    active = current_cycle(local_now, policy)
    if active.contains(target_date):
        return WindowOpen(target_date=target_date, cycle=active)

    following = active.next
    if following.contains(target_date):
        unlock_at = cutover_for(active, policy)
        if local_now >= unlock_at:
            return WindowOpen(target_date=target_date, cycle=following)
        return Rejected(
            RejectionReason.NEXT_CYCLE_LOCKED,
            f"next week opens {unlock_at.strftime('%A %d/%m %H:%M')}",
        )

    return Rejected(RejectionReason.OUT_OF_RANGE, "only the current or next week can be booked")
