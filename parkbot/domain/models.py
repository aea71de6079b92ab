"""Domain models for spot inventory, reservations and waitlists."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional


def spot_sort_key(spot_id: str) -> tuple[int, int, str]:
    """Lowest-numbered first: numeric ids numerically, others after them."""
    token = spot_id.strip()
    if token.isdigit():
        return (0, int(token), token)
    return (1, 0, token)


def sort_spot_ids(spot_ids) -> list[str]:
    return sorted(spot_ids, key=spot_sort_key)


@dataclass(frozen=True)
class Spot:
    spot_id: str
    active: bool = True


@dataclass(frozen=True)
class Reservation:
    user_id: str
    date: date
    spot_id: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class WaitlistEntry:
    user_id: str
    date: date
    position: int
    display_name: Optional[str] = None


@dataclass(frozen=True)
class FixedSpotRelease:
    spot_id: str
    start_date: date
    end_date: date


@dataclass(frozen=True)
class LotteryQueueEntry:
    user_id: str
    date: date
    submitted_at: datetime
    reply_to: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class Cycle:
    """A Monday to Friday booking span."""

    monday: date

    @property
    def friday(self) -> date:
        return self.monday + timedelta(days=4)

    @property
    def next(self) -> "Cycle":
        return Cycle(self.monday + timedelta(days=7))

    @property
    def previous(self) -> "Cycle":
        return Cycle(self.monday - timedelta(days=7))

    def contains(self, target_date: date) -> bool:
        return self.monday <= target_date <= self.friday

    def workdays(self) -> list[date]:
        return [self.monday + timedelta(days=offset) for offset in range(5)]


@dataclass(frozen=True)
class SpotStatus:
    spot_id: str
    kind: str
    occupant_id: Optional[str] = None
    occupant_name: Optional[str] = None

    @property
    def reserved(self) -> bool:
        return self.occupant_id is not None


@dataclass(frozen=True)
class SystemStats:
    flex_spots: int
    fixed_spots: int
    reservations: int
    waitlisted: int
    queued: int
