"""HTTP controller layer for booking, release and waitlist commands."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from parkbot.controllers.dependencies import get_engine
from parkbot.domain.models import Reservation, SpotStatus, WaitlistEntry
from parkbot.services.reservation_service import ReservationEngine
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reservations"])

MAX_BATCH_DAYS = 10

# Alias for fields whose name shadows the type inside a model body.
Day = date


class HandoverRow(BaseModel):
    date: date
    spot_id: str
    user_id: str


class OutcomeResponse(BaseModel):
    """Serialized engine outcome; ``outcome`` names the variant."""

    outcome: str
    date: Optional[Day] = None
    spot_id: Optional[str] = None
    position: Optional[int] = Field(default=None, gt=0)
    resolves_at: Optional[str] = None
    reason: Optional[str] = None
    detail: Optional[str] = None
    reassigned_to: Optional[str] = None
    start_date: Optional[Day] = None
    end_date: Optional[Day] = None
    handovers: Optional[list[HandoverRow]] = None


class ReservationRequest(BaseModel):
    user_id: str = Field(min_length=1)
    date: date
    display_name: Optional[str] = None
    reply_to: Optional[str] = None
    join_waitlist: bool = True

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_id must be non-empty")
        return value.strip()


class BatchReservationRequest(BaseModel):
    user_id: str = Field(min_length=1)
    dates: list[date] = Field(min_length=1, max_length=MAX_BATCH_DAYS)
    display_name: Optional[str] = None
    reply_to: Optional[str] = None
    join_waitlist: bool = True


class BatchReleaseRequest(BaseModel):
    user_id: str = Field(min_length=1)
    dates: list[date] = Field(min_length=1, max_length=MAX_BATCH_DAYS)


class WaitlistJoinRequest(BaseModel):
    user_id: str = Field(min_length=1)
    date: date
    display_name: Optional[str] = None
    reply_to: Optional[str] = None


class BatchOutcomeResponse(BaseModel):
    outcomes: list[OutcomeResponse]


class ReservationRow(BaseModel):
    user_id: str
    date: date
    spot_id: str
    display_name: Optional[str] = None


class UserReservationsResponse(BaseModel):
    user_id: str
    reservations: list[ReservationRow]


class SpotStatusRow(BaseModel):
    spot_id: str
    kind: str
    reserved: bool
    occupant_id: Optional[str] = None
    occupant_name: Optional[str] = None


class DayStatusResponse(BaseModel):
    date: date
    spots: list[SpotStatusRow]
    free_spots: int = Field(ge=0)
    waitlist_length: int = Field(ge=0)


class WeekStatusResponse(BaseModel):
    days: list[DayStatusResponse]


class WaitlistRow(BaseModel):
    user_id: str
    position: int = Field(gt=0)
    display_name: Optional[str] = None


class WaitlistResponse(BaseModel):
    date: date
    entries: list[WaitlistRow]


def _reservation_row(reservation: Reservation) -> ReservationRow:
    return ReservationRow(
        user_id=reservation.user_id,
        date=reservation.date,
        spot_id=reservation.spot_id,
        display_name=reservation.display_name,
    )


def _status_row(status_row: SpotStatus) -> SpotStatusRow:
    return SpotStatusRow(
        spot_id=status_row.spot_id,
        kind=status_row.kind,
        reserved=status_row.reserved,
        occupant_id=status_row.occupant_id,
        occupant_name=status_row.occupant_name,
    )


def _waitlist_row(entry: WaitlistEntry) -> WaitlistRow:
    return WaitlistRow(user_id=entry.user_id, position=entry.position, display_name=entry.display_name)


def _day_response(engine: ReservationEngine, target_date: date, rows: list[SpotStatus]) -> DayStatusResponse:
    return DayStatusResponse(
        date=target_date,
        spots=[_status_row(row) for row in rows],
        free_spots=sum(1 for row in rows if not row.reserved and row.kind != "retired"),
        waitlist_length=len(engine.waitlist(target_date)),
    )


def _internal_error(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post(
    "/reservations",
    response_model=OutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def request_reservation(
    payload: ReservationRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> OutcomeResponse:
    try:
        outcome = engine.request_reservation(
            payload.user_id,
            payload.date,
            display_name=payload.display_name,
            reply_to=payload.reply_to,
            join_waitlist=payload.join_waitlist,
        )
        return OutcomeResponse(**outcome.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("request reservation", exc) from exc


@router.post(
    "/reservations/batch",
    response_model=BatchOutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def request_reservations(
    payload: BatchReservationRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> BatchOutcomeResponse:
    try:
        outcomes = engine.request_reservations(
            payload.user_id,
            payload.dates,
            display_name=payload.display_name,
            reply_to=payload.reply_to,
            join_waitlist=payload.join_waitlist,
        )
        return BatchOutcomeResponse(
            outcomes=[OutcomeResponse(**outcome.to_api_dict()) for outcome in outcomes.values()]
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("request reservations", exc) from exc


@router.delete(
    "/reservations/{user_id}/{target_date}",
    response_model=OutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def release_reservation(
    user_id: str,
    target_date: date,
    engine: ReservationEngine = Depends(get_engine),
) -> OutcomeResponse:
    try:
        outcome = engine.release_reservation(user_id, target_date)
        return OutcomeResponse(**outcome.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("release reservation", exc) from exc


@router.post(
    "/reservations/release",
    response_model=BatchOutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def release_reservations(
    payload: BatchReleaseRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> BatchOutcomeResponse:
    try:
        outcomes = engine.release_reservations(payload.user_id, payload.dates)
        return BatchOutcomeResponse(
            outcomes=[OutcomeResponse(**outcome.to_api_dict()) for outcome in outcomes.values()]
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("release reservations", exc) from exc


@router.get(
    "/users/{user_id}/reservations",
    response_model=UserReservationsResponse,
    status_code=status.HTTP_200_OK,
)
def user_reservations(
    user_id: str,
    engine: ReservationEngine = Depends(get_engine),
) -> UserReservationsResponse:
    try:
        reservations = engine.user_reservations(user_id)
        return UserReservationsResponse(
            user_id=user_id,
            reservations=[_reservation_row(item) for item in reservations],
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("list reservations", exc) from exc


@router.post(
    "/waitlist",
    response_model=OutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def join_waitlist(
    payload: WaitlistJoinRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> OutcomeResponse:
    try:
        outcome = engine.join_waitlist(
            payload.user_id,
            payload.date,
            display_name=payload.display_name,
            reply_to=payload.reply_to,
        )
        return OutcomeResponse(**outcome.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("join waitlist", exc) from exc


@router.delete(
    "/waitlist/{user_id}/{target_date}",
    response_model=OutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
def leave_waitlist(
    user_id: str,
    target_date: date,
    engine: ReservationEngine = Depends(get_engine),
) -> OutcomeResponse:
    try:
        outcome = engine.leave_waitlist(user_id, target_date)
        return OutcomeResponse(**outcome.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("leave waitlist", exc) from exc


@router.get("/days/{target_date}", response_model=DayStatusResponse, status_code=status.HTTP_200_OK)
def day_status(
    target_date: date,
    engine: ReservationEngine = Depends(get_engine),
) -> DayStatusResponse:
    try:
        return _day_response(engine, target_date, engine.day_status(target_date))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("load day status", exc) from exc


@router.get(
    "/days/{target_date}/waitlist",
    response_model=WaitlistResponse,
    status_code=status.HTTP_200_OK,
)
def day_waitlist(
    target_date: date,
    engine: ReservationEngine = Depends(get_engine),
) -> WaitlistResponse:
    try:
        entries = engine.waitlist(target_date)
        return WaitlistResponse(date=target_date, entries=[_waitlist_row(entry) for entry in entries])
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("load waitlist", exc) from exc


@router.get("/week", response_model=WeekStatusResponse, status_code=status.HTTP_200_OK)
def week_status(engine: ReservationEngine = Depends(get_engine)) -> WeekStatusResponse:
    try:
        week = engine.week_status()
        return WeekStatusResponse(
            days=[_day_response(engine, target_date, rows) for target_date, rows in week.items()]
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("load week status", exc) from exc
