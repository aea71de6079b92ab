"""Spot allocation for a single date."""

from __future__ import annotations

from datetime import date
from typing import Optional

from parkbot.domain.models import Reservation
from parkbot.repository.data_repository import DataRepository, SpotAlreadyReservedError
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


class SpotAllocator:
    """Picks the lowest-numbered free spot, flex pool first.

    Released fixed spots form a secondary pool that is only scanned once the
    flex pool is exhausted. The (date, spot) unique constraint settles races:
    losing one moves on to the next candidate instead of failing.

    ``UserAlreadyBookedError`` from the repository propagates to the caller.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def candidates(self, target_date: date) -> list[str]:
        reserved = self._repository.list_reserved_spot_ids(target_date)
        flex_ids = [spot.spot_id for spot in self._repository.list_flex_spots()]
        released_ids = [
            spot_id
            for spot_id in self._repository.list_released_fixed_spot_ids(target_date)
            if spot_id not in flex_ids
        ]
        return [spot_id for spot_id in flex_ids + released_ids if spot_id not in reserved]

    def is_allocatable(self, target_date: date, spot_id: str) -> bool:
        return spot_id in self.candidates(target_date)

    def allocate(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str] = None,
        preferred_spot_id: Optional[str] = None,
    ) -> Optional[Reservation]:
        """Reserve a spot or return None when both pools are exhausted."""
        candidates = self.candidates(target_date)
        if preferred_spot_id is not None and preferred_spot_id in candidates:
            candidates.remove(preferred_spot_id)
            candidates.insert(0, preferred_spot_id)

        for spot_id in candidates:
            try:
                reservation = self._repository.create_reservation(
                    user_id=user_id,
                    target_date=target_date,
                    spot_id=spot_id,
                    display_name=display_name,
                )
            except SpotAlreadyReservedError:
                logger.info(
                    "Allocation conflict on spot %s for %s; trying next candidate",
                    spot_id,
                    target_date,
                )
                continue
            logger.info("Spot %s reserved for user %s on %s", spot_id, user_id, target_date)
            return reservation

        logger.info("No spot available on %s for user %s", target_date, user_id)
        return None
