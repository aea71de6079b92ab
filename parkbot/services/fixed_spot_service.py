"""Temporary release of fixed spots into the shared pool."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence, Union

from parkbot.domain.models import FixedSpotRelease
from parkbot.domain.outcomes import RejectionReason, Rejected
from parkbot.repository.data_repository import DataRepository
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


class FixedSpotOverlay:
    """Records and withdraws release intervals for fixed spots.

    Recording an interval cancels nothing: for each covered date the spot
    simply becomes a candidate in the allocator's secondary pool while it is
    unreserved. Rows whose end date has passed are left in place as inert
    history.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def release(
        self,
        spot_id: str,
        start_date: date,
        end_date: date,
        today: date,
    ) -> Union[FixedSpotRelease, Rejected]:
        if not self._repository.is_fixed_spot(spot_id):
            return Rejected(RejectionReason.NOT_FIXED_SPOT, f"spot {spot_id} is not a fixed spot")
        if end_date < start_date:
            return Rejected(RejectionReason.OUT_OF_RANGE, "end date is before start date")
        if end_date < today:
            return Rejected(RejectionReason.OUT_OF_RANGE, "release period is already over")

        release = self._repository.create_fixed_spot_release(spot_id, start_date, end_date)
        logger.info("Fixed spot %s released from %s to %s", spot_id, start_date, end_date)
        return release

    def withdraw(self, spot_id: str, today: date) -> int:
        removed = self._repository.delete_fixed_spot_releases(spot_id, ending_on_or_after=today)
        logger.info("Withdrew %s release(s) of fixed spot %s", removed, spot_id)
        return removed

    def released_on(self, target_date: date) -> list[str]:
        return self._repository.list_released_fixed_spot_ids(target_date)

    def releases(self, spot_id: Optional[str] = None) -> list[FixedSpotRelease]:
        return self._repository.list_fixed_spot_releases(spot_id)

    def fixed_spots(self) -> list[str]:
        return self._repository.list_fixed_spots()

    def set_fixed_spots(self, spot_ids: Sequence[str]) -> list[str]:
        cleaned = [spot_id.strip() for spot_id in spot_ids if spot_id.strip()]
        self._repository.replace_fixed_spots(cleaned)
        logger.info("Fixed pool replaced with %s spots", len(cleaned))
        return self._repository.list_fixed_spots()
