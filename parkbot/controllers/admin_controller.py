"""Controller layer for admin inventory and supervision endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator, model_validator

from parkbot.controllers.dependencies import get_auth_service, get_engine, require_admin
from parkbot.controllers.reservation_controller import OutcomeResponse
from parkbot.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
    OperatorSession,
)
from parkbot.services.lottery_service import LotteryResult
from parkbot.services.reservation_service import ReservationEngine
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)
    operator_id: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    operator_id: str
    expires_at: datetime


class SpotListRequest(BaseModel):
    spot_ids: list[str]

    @field_validator("spot_ids")
    @classmethod
    def validate_spot_ids(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("spot_ids values must be non-empty")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("spot_ids must not contain duplicates")
        return cleaned


class SpotListResponse(BaseModel):
    spot_ids: list[str]


class SpotActivationRequest(BaseModel):
    active: bool


class SpotActivationResponse(BaseModel):
    spot_id: str
    active: bool


class FixedReleaseRequest(BaseModel):
    spot_id: str = Field(min_length=1)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_range(self) -> "FixedReleaseRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class FixedReleaseRow(BaseModel):
    spot_id: str
    start_date: date
    end_date: date


class FixedReleaseListResponse(BaseModel):
    releases: list[FixedReleaseRow]


class WithdrawResponse(BaseModel):
    spot_id: str
    withdrawn: int = Field(ge=0)


class StatsResponse(BaseModel):
    flex_spots: int = Field(ge=0)
    fixed_spots: int = Field(ge=0)
    reservations: int = Field(ge=0)
    waitlisted: int = Field(ge=0)
    queued: int = Field(ge=0)


class QueuedRequestRow(BaseModel):
    user_id: str
    submitted_at: datetime
    display_name: Optional[str] = None


class LotteryQueueRow(BaseModel):
    date: date
    closes_at: Optional[datetime] = None
    requests: list[QueuedRequestRow]


class LotteryQueuesResponse(BaseModel):
    window_open: bool
    queues: list[LotteryQueueRow]


class LotteryResultRow(BaseModel):
    user_id: str
    result: OutcomeResponse


class LotteryFlushResponse(BaseModel):
    results: list[LotteryResultRow]


class LotteryClearResponse(BaseModel):
    dropped: int = Field(ge=0)


class CycleResetResponse(BaseModel):
    start_date: Optional[date] = None
    end_date: date
    reservations_cleared: int = Field(ge=0)
    waitlist_cleared: int = Field(ge=0)


def _lottery_row(result: LotteryResult) -> LotteryResultRow:
    return LotteryResultRow(
        user_id=result.entry.user_id,
        result=OutcomeResponse(**result.outcome.to_api_dict()),
    )


def _operator(session: Optional[OperatorSession]) -> str:
    return session.operator_id if session is not None else "an unauthenticated caller"


def _internal_error(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        session = auth_service.login(payload.admin_token, payload.operator_id)
        return LoginResponse(
            access_token=session.access_token,
            operator_id=session.operator_id,
            expires_at=session.expires_at,
        )
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("login", exc) from exc


@router.get(
    "/spots/flex",
    response_model=SpotListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def list_flex_spots(engine: ReservationEngine = Depends(get_engine)) -> SpotListResponse:
    return SpotListResponse(spot_ids=engine.flex_spots())


@router.put(
    "/spots/flex",
    response_model=SpotListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def set_flex_spots(
    payload: SpotListRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> SpotListResponse:
    try:
        return SpotListResponse(spot_ids=engine.set_flex_spots(payload.spot_ids))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("replace flex spots", exc) from exc


@router.put(
    "/spots/{spot_id}/active",
    response_model=SpotActivationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def set_spot_active(
    spot_id: str,
    payload: SpotActivationRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> SpotActivationResponse:
    try:
        updated = engine.set_spot_active(spot_id, payload.active)
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("update spot", exc) from exc
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Flex spot {spot_id} does not exist",
        )
    return SpotActivationResponse(spot_id=spot_id, active=payload.active)


@router.get(
    "/spots/fixed",
    response_model=SpotListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def list_fixed_spots(engine: ReservationEngine = Depends(get_engine)) -> SpotListResponse:
    return SpotListResponse(spot_ids=engine.fixed_spots())


@router.put(
    "/spots/fixed",
    response_model=SpotListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def set_fixed_spots(
    payload: SpotListRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> SpotListResponse:
    try:
        return SpotListResponse(spot_ids=engine.set_fixed_spots(payload.spot_ids))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("replace fixed spots", exc) from exc


@router.post(
    "/fixed-releases",
    response_model=OutcomeResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def release_fixed_spot(
    payload: FixedReleaseRequest,
    engine: ReservationEngine = Depends(get_engine),
) -> OutcomeResponse:
    try:
        outcome = engine.release_fixed_spot(payload.spot_id, payload.start_date, payload.end_date)
        return OutcomeResponse(**outcome.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("release fixed spot", exc) from exc


@router.get(
    "/fixed-releases",
    response_model=FixedReleaseListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def list_fixed_releases(
    spot_id: Optional[str] = None,
    engine: ReservationEngine = Depends(get_engine),
) -> FixedReleaseListResponse:
    releases = engine.fixed_spot_releases(spot_id)
    return FixedReleaseListResponse(
        releases=[
            FixedReleaseRow(
                spot_id=release.spot_id,
                start_date=release.start_date,
                end_date=release.end_date,
            )
            for release in releases
        ]
    )


@router.delete(
    "/fixed-releases/{spot_id}",
    response_model=WithdrawResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def withdraw_fixed_release(
    spot_id: str,
    engine: ReservationEngine = Depends(get_engine),
) -> WithdrawResponse:
    try:
        return WithdrawResponse(spot_id=spot_id, withdrawn=engine.withdraw_fixed_spot_release(spot_id))
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("withdraw fixed spot release", exc) from exc


@router.get(
    "/stats",
    response_model=StatsResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def system_stats(engine: ReservationEngine = Depends(get_engine)) -> StatsResponse:
    try:
        stats = engine.system_stats()
        return StatsResponse(
            flex_spots=stats.flex_spots,
            fixed_spots=stats.fixed_spots,
            reservations=stats.reservations,
            waitlisted=stats.waitlisted,
            queued=stats.queued,
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("load stats", exc) from exc


@router.get(
    "/lottery/queues",
    response_model=LotteryQueuesResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def lottery_queues(engine: ReservationEngine = Depends(get_engine)) -> LotteryQueuesResponse:
    lottery = engine.lottery
    rows: list[LotteryQueueRow] = []
    for target_date, entries in lottery.all_queues().items():
        queue_status = lottery.queue_status(target_date)
        rows.append(
            LotteryQueueRow(
                date=target_date,
                closes_at=queue_status.closes_at if queue_status else None,
                requests=[
                    QueuedRequestRow(
                        user_id=entry.user_id,
                        submitted_at=entry.submitted_at,
                        display_name=entry.display_name,
                    )
                    for entry in entries
                ],
            )
        )
    return LotteryQueuesResponse(window_open=lottery.is_window_open(), queues=rows)


@router.post(
    "/lottery/flush",
    response_model=LotteryFlushResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
def flush_lottery(engine: ReservationEngine = Depends(get_engine)) -> LotteryFlushResponse:
    try:
        return LotteryFlushResponse(results=[_lottery_row(result) for result in engine.lottery.flush()])
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("flush lottery", exc) from exc


@router.delete(
    "/lottery/queues",
    response_model=LotteryClearResponse,
    status_code=status.HTTP_200_OK,
)
def clear_lottery(
    session: Optional[OperatorSession] = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
) -> LotteryClearResponse:
    logger.warning("Lottery buffers dropped by %s", _operator(session))
    return LotteryClearResponse(dropped=engine.lottery.clear())


@router.post(
    "/cycle/reset",
    response_model=CycleResetResponse,
    status_code=status.HTTP_200_OK,
)
def reset_cycle(
    session: Optional[OperatorSession] = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
) -> CycleResetResponse:
    try:
        logger.info("Manual cycle reset requested by %s", _operator(session))
        result = engine.run_cycle_reset()
        return CycleResetResponse(**result.to_api_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("reset cycle", exc) from exc


class ClearAllResponse(BaseModel):
    reservations_cleared: int = Field(ge=0)
    waitlist_cleared: int = Field(ge=0)


@router.delete(
    "/reservations",
    response_model=ClearAllResponse,
    status_code=status.HTTP_200_OK,
)
def clear_all(
    session: Optional[OperatorSession] = Depends(require_admin),
    engine: ReservationEngine = Depends(get_engine),
) -> ClearAllResponse:
    try:
        logger.warning("Clear-all requested by %s", _operator(session))
        reservations, waitlist = engine.clear_all()
        return ClearAllResponse(reservations_cleared=reservations, waitlist_cleared=waitlist)
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _internal_error("clear reservations", exc) from exc
