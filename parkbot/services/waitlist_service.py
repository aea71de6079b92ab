"""Per-date FIFO waitlist."""

from __future__ import annotations

from datetime import date
from typing import Optional

from parkbot.domain.models import WaitlistEntry
from parkbot.domain.outcomes import (
    RejectionReason,
    Rejected,
    WaitlistLeft,
    Waitlisted,
    WaitlistOutcome,
)
from parkbot.repository.data_repository import AlreadyWaitlistedError, DataRepository
from parkbot.utils.locks import DateLockRegistry
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


class WaitlistService:
    def __init__(self, repository: DataRepository, locks: DateLockRegistry) -> None:
        self._repository = repository
        self._locks = locks

    def enqueue(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str] = None,
    ) -> WaitlistOutcome:
        with self._locks.hold(target_date):
            # A confirmed spot and a queue slot for the same date are exclusive.
            reservation = self._repository.get_reservation(user_id, target_date)
            if reservation is not None:
                return Rejected(
                    RejectionReason.DUPLICATE_BOOKING,
                    f"already holds spot {reservation.spot_id}",
                )
            try:
                entry = self._repository.enqueue_waitlist(user_id, target_date, display_name)
            except AlreadyWaitlistedError as exc:
                return Rejected(
                    RejectionReason.ALREADY_QUEUED,
                    "already on the waitlist",
                    position=exc.position,
                )
        logger.info("User %s waitlisted for %s at position %s", user_id, target_date, entry.position)
        return Waitlisted(date=target_date, position=entry.position)

    def peek_head(self, target_date: date) -> Optional[WaitlistEntry]:
        return self._repository.peek_waitlist_head(target_date)

    def pop_head(self, target_date: date) -> Optional[WaitlistEntry]:
        with self._locks.hold(target_date):
            return self._repository.pop_waitlist_head(target_date)

    def remove(self, user_id: str, target_date: date) -> WaitlistOutcome:
        with self._locks.hold(target_date):
            position = self._repository.remove_waitlist_entry(user_id, target_date)
        if position is None:
            return Rejected(RejectionReason.NOT_WAITLISTED, "not on the waitlist for that date")
        logger.info("User %s left the %s waitlist from position %s", user_id, target_date, position)
        return WaitlistLeft(date=target_date, position=position)

    def entries(self, target_date: date) -> list[WaitlistEntry]:
        return self._repository.list_waitlist(target_date)
