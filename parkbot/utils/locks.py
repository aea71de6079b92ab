"""Per-date critical sections."""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from datetime import date
from threading import Lock, RLock
from typing import Iterable, Iterator


class DateLockRegistry:
    """Hands out one re-entrant lock per calendar date.

    Mutations keyed on the same date serialize on that date's lock; different
    dates never contend. The engine assumes a single active process, so the
    locks are in-process only.
    """

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[date, RLock] = {}

    def lock_for(self, target_date: date) -> RLock:
        with self._guard:
            lock = self._locks.get(target_date)
            if lock is None:
                lock = RLock()
                self._locks[target_date] = lock
            return lock

    @contextmanager
    def hold(self, target_date: date) -> Iterator[None]:
        with self.lock_for(target_date):
            yield

    @contextmanager
    def hold_many(self, dates: Iterable[date]) -> Iterator[None]:
        # Ascending order so two multi-date holders cannot deadlock.
        with ExitStack() as stack:
            for item in sorted(set(dates)):
                stack.enter_context(self.lock_for(item))
            yield

    def forget_before(self, cutoff: date) -> int:
        """Drop locks for dates before ``cutoff`` that nobody currently holds."""
        removed = 0
        with self._guard:
            for key in [item for item in self._locks if item < cutoff]:
                lock = self._locks[key]
                if lock.acquire(blocking=False):
                    try:
                        del self._locks[key]
                        removed += 1
                    finally:
                        lock.release()
        return removed
