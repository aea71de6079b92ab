from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from parkbot.domain.booking_window import (
    check_booking_window,
    current_cycle,
    ending_cycle,
    fairness_window_close,
    in_fairness_window,
    latest_cutover,
    next_cutover,
)
from parkbot.domain.constraints import BookingPolicy
from parkbot.domain.outcomes import RejectionReason, Rejected, WindowOpen


MVD = ZoneInfo("America/Montevideo")
POLICY = BookingPolicy(
    timezone="America/Montevideo",
    cutover_weekday=4,
    cutover_hour=17,
    cutover_minute=0,
    fairness_window_minutes=15,
)

# Week of 2026-03-02 (Monday) to 2026-03-06 (Friday).
MONDAY = date(2026, 3, 2)
WEDNESDAY = date(2026, 3, 4)
FRIDAY = date(2026, 3, 6)
SATURDAY = date(2026, 3, 7)
NEXT_MONDAY = date(2026, 3, 9)
NEXT_FRIDAY = date(2026, 3, 13)


def _at(day: date, hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=MVD)


def _reason(verdict) -> RejectionReason:
    assert isinstance(verdict, Rejected)
    return verdict.reason


def test_current_cycle_weekdays_are_immediately_bookable() -> None:
    now = _at(WEDNESDAY, 10)
    for target in (WEDNESDAY, date(2026, 3, 5), FRIDAY):
        verdict = check_booking_window(now, target, POLICY)
        assert isinstance(verdict, WindowOpen)
        assert verdict.cycle.monday == MONDAY


def test_past_dates_are_out_of_range() -> None:
    assert _reason(check_booking_window(_at(WEDNESDAY, 10), MONDAY, POLICY)) == RejectionReason.OUT_OF_RANGE


def test_weekends_are_always_rejected() -> None:
    for now in (_at(WEDNESDAY, 10), _at(FRIDAY, 18), _at(SATURDAY, 9)):
        for target in (date(2026, 3, 7), date(2026, 3, 8), date(2026, 3, 14)):
            assert _reason(check_booking_window(now, target, POLICY)) == RejectionReason.WEEKEND_DATE


def test_next_cycle_is_locked_until_cutover() -> None:
    verdict = check_booking_window(_at(FRIDAY, 16, 59, 59), NEXT_MONDAY, POLICY)
    assert _reason(verdict) == RejectionReason.NEXT_CYCLE_LOCKED


def test_next_cycle_opens_at_cutover_instant() -> None:
    verdict = check_booking_window(_at(FRIDAY, 17), NEXT_MONDAY, POLICY)
    assert isinstance(verdict, WindowOpen)
    assert verdict.cycle.monday == NEXT_MONDAY


def test_cutover_is_evaluated_in_configured_zone() -> None:
    # 20:00 UTC is 17:00 in Montevideo (UTC-3).
    utc_now = datetime(2026, 3, 6, 20, 0, tzinfo=timezone.utc)
    assert isinstance(check_booking_window(utc_now, NEXT_MONDAY, POLICY), WindowOpen)
    earlier = datetime(2026, 3, 6, 19, 59, tzinfo=timezone.utc)
    assert _reason(check_booking_window(earlier, NEXT_MONDAY, POLICY)) == RejectionReason.NEXT_CYCLE_LOCKED


def test_ending_cycle_is_closed_after_cutover() -> None:
    verdict = check_booking_window(_at(FRIDAY, 17, 30), FRIDAY, POLICY)
    assert _reason(verdict) == RejectionReason.OUT_OF_RANGE


def test_cycle_after_next_stays_locked_over_weekend() -> None:
    now = _at(SATURDAY, 12)
    assert isinstance(check_booking_window(now, NEXT_FRIDAY, POLICY), WindowOpen)
    assert _reason(check_booking_window(now, date(2026, 3, 16), POLICY)) == RejectionReason.NEXT_CYCLE_LOCKED


def test_dates_beyond_next_cycle_are_out_of_range() -> None:
    verdict = check_booking_window(_at(WEDNESDAY, 10), date(2026, 3, 16), POLICY)
    assert _reason(verdict) == RejectionReason.OUT_OF_RANGE


def test_current_cycle_advances_at_cutover_and_on_weekends() -> None:
    assert current_cycle(_at(FRIDAY, 16, 59), POLICY).monday == MONDAY
    assert current_cycle(_at(FRIDAY, 17), POLICY).monday == NEXT_MONDAY
    assert current_cycle(_at(SATURDAY, 8), POLICY).monday == NEXT_MONDAY
    assert current_cycle(_at(NEXT_MONDAY, 8), POLICY).monday == NEXT_MONDAY


def test_cutover_instants() -> None:
    cutover = _at(FRIDAY, 17)
    assert latest_cutover(cutover, POLICY) == cutover
    assert latest_cutover(_at(FRIDAY, 16), POLICY) == _at(date(2026, 2, 27), 17)
    assert next_cutover(cutover, POLICY) == _at(NEXT_FRIDAY, 17)
    assert next_cutover(_at(WEDNESDAY, 9), POLICY) == cutover
    assert ending_cycle(_at(SATURDAY, 9), POLICY).monday == MONDAY


def test_fairness_window_bounds() -> None:
    assert not in_fairness_window(_at(FRIDAY, 16, 59, 59), POLICY)
    assert in_fairness_window(_at(FRIDAY, 17), POLICY)
    assert in_fairness_window(_at(FRIDAY, 17, 14, 59), POLICY)
    assert not in_fairness_window(_at(FRIDAY, 17, 15), POLICY)
    assert fairness_window_close(_at(FRIDAY, 17, 3), POLICY) == _at(FRIDAY, 17, 15)


def test_naive_datetimes_are_rejected() -> None:
    with pytest.raises(ValueError):
        check_booking_window(datetime(2026, 3, 4, 10, 0), WEDNESDAY, POLICY)
