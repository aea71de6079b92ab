"""Booking-cycle policy and its validation rules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from parkbot.utils.config import Settings


@dataclass(frozen=True)
class BookingPolicy:
    timezone: str
    cutover_weekday: int
    cutover_hour: int
    cutover_minute: int
    fairness_window_minutes: int

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def fairness_window(self) -> timedelta:
        return timedelta(minutes=self.fairness_window_minutes)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        policy = cls(
            timezone=settings.timezone,
            cutover_weekday=settings.cutover_weekday,
            cutover_hour=settings.cutover_hour,
            cutover_minute=settings.cutover_minute,
            fairness_window_minutes=settings.fairness_window_minutes,
        )
        validate_booking_policy(policy)
        return policy


def validate_booking_policy(policy: BookingPolicy) -> None:
    try:
        ZoneInfo(policy.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"timezone {policy.timezone!r} is not a known IANA zone") from exc
    # The cutover closes a Monday-Friday cycle, so it must fall on a workday.
    if not 0 <= policy.cutover_weekday <= 4:
        raise ValueError("cutover_weekday must be between 0 (Monday) and 4 (Friday)")
    if not 0 <= policy.cutover_hour <= 23:
        raise ValueError("cutover_hour must be between 0 and 23")
    if not 0 <= policy.cutover_minute <= 59:
        raise ValueError("cutover_minute must be between 0 and 59")
    if policy.fairness_window_minutes <= 0:
        raise ValueError("fairness_window_minutes must be > 0")
    if policy.fairness_window_minutes >= 24 * 60:
        raise ValueError("fairness_window_minutes must be shorter than one day")
