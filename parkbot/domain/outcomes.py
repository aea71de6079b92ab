"""Tagged result types returned by engine operations.

Callers branch on the concrete class (or on ``kind`` once serialized); none
of these are exceptions. ``Rejected`` carries a ``RejectionReason`` and, for
``ALREADY_QUEUED``, the caller's current position.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional, Union

from parkbot.domain.models import Cycle


class RejectionReason(str, Enum):
    OUT_OF_RANGE = "OUT_OF_RANGE"
    WEEKEND_DATE = "WEEKEND_DATE"
    NEXT_CYCLE_LOCKED = "NEXT_CYCLE_LOCKED"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    ALREADY_QUEUED = "ALREADY_QUEUED"
    NO_SPOT_AVAILABLE = "NO_SPOT_AVAILABLE"
    SPOT_AVAILABLE = "SPOT_AVAILABLE"
    NOT_FIXED_SPOT = "NOT_FIXED_SPOT"
    NO_ACTIVE_RESERVATION = "NO_ACTIVE_RESERVATION"
    NOT_WAITLISTED = "NOT_WAITLISTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    detail: str = ""
    position: Optional[int] = None
    kind: str = field(default="rejected", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "outcome": self.kind,
            "reason": self.reason.value,
            "detail": self.detail,
        }
        if self.position is not None:
            payload["position"] = self.position
        return payload


@dataclass(frozen=True)
class WindowOpen:
    """Validator verdict: the date may be booked now."""

    target_date: date
    cycle: Cycle


@dataclass(frozen=True)
class Confirmed:
    date: date
    spot_id: str
    kind: str = field(default="confirmed", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {"outcome": self.kind, "date": self.date.isoformat(), "spot_id": self.spot_id}


@dataclass(frozen=True)
class Queued:
    date: date
    position: int
    resolves_at: str
    kind: str = field(default="queued", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.kind,
            "date": self.date.isoformat(),
            "position": self.position,
            "resolves_at": self.resolves_at,
        }


@dataclass(frozen=True)
class Waitlisted:
    date: date
    position: int
    kind: str = field(default="waitlisted", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {"outcome": self.kind, "date": self.date.isoformat(), "position": self.position}


@dataclass(frozen=True)
class Released:
    date: date
    spot_id: str
    reassigned_to: Optional[str] = None
    kind: str = field(default="released", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.kind,
            "date": self.date.isoformat(),
            "spot_id": self.spot_id,
            "reassigned_to": self.reassigned_to,
        }


@dataclass(frozen=True)
class WaitlistLeft:
    date: date
    position: int
    kind: str = field(default="waitlist_left", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {"outcome": self.kind, "date": self.date.isoformat(), "position": self.position}


@dataclass(frozen=True)
class Handover:
    """A freed spot given to the head of a date's waitlist."""

    date: date
    spot_id: str
    user_id: str


@dataclass(frozen=True)
class FixedReleaseAccepted:
    spot_id: str
    start_date: date
    end_date: date
    handovers: tuple[Handover, ...] = ()
    kind: str = field(default="ok", init=False)

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.kind,
            "spot_id": self.spot_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "handovers": [
                {"date": item.date.isoformat(), "spot_id": item.spot_id, "user_id": item.user_id}
                for item in self.handovers
            ],
        }


WindowVerdict = Union[WindowOpen, Rejected]
ReservationOutcome = Union[Confirmed, Queued, Waitlisted, Rejected]
ReleaseOutcome = Union[Released, Rejected]
FixedReleaseOutcome = Union[FixedReleaseAccepted, Rejected]
WaitlistOutcome = Union[Queued, Waitlisted, WaitlistLeft, Rejected]
