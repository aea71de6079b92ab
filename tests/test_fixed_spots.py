from __future__ import annotations

import random
from dataclasses import replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from parkbot.domain.outcomes import (
    Confirmed,
    FixedReleaseAccepted,
    RejectionReason,
    Rejected,
    Waitlisted,
)
from parkbot.repository.data_repository import DataRepository
from parkbot.services.fixed_spot_service import FixedSpotOverlay
from parkbot.services.reservation_service import ReservationEngine
from parkbot.utils.clock import ManualClock, ManualTimerFactory
from parkbot.utils.config import get_settings


MVD = ZoneInfo("America/Montevideo")
MONDAY = date(2026, 3, 2)
TUESDAY = date(2026, 3, 3)
WEDNESDAY = date(2026, 3, 4)
THURSDAY = date(2026, 3, 5)
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=MVD)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def send(self, destination: str, text: str) -> None:
        self.messages.append((destination, text))


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        timezone="America/Montevideo",
        supervisor_user_id=None,
        admin_token=None,
    )


def _build_engine(tmp_path, filename: str, notifier=None):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_spots_if_empty(("1",), ("F1", "F2"))
    clock = ManualClock(NOW)
    engine = ReservationEngine(
        repository=repository,
        settings=settings,
        clock=clock,
        timers=ManualTimerFactory(clock),
        notifier=notifier or RecordingNotifier(),
        rng=random.Random(1),
    )
    return engine, repository, clock


def test_release_requires_fixed_spot(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "not_fixed.db")

    outcome = engine.release_fixed_spot("1", TUESDAY, WEDNESDAY)

    assert isinstance(outcome, Rejected)
    assert outcome.reason == RejectionReason.NOT_FIXED_SPOT


def test_release_with_inverted_or_past_range_is_rejected(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "bad_range.db")

    inverted = engine.release_fixed_spot("F1", WEDNESDAY, TUESDAY)
    past = engine.release_fixed_spot("F1", date(2026, 2, 23), date(2026, 2, 27))

    assert isinstance(inverted, Rejected) and inverted.reason == RejectionReason.OUT_OF_RANGE
    assert isinstance(past, Rejected) and past.reason == RejectionReason.OUT_OF_RANGE
    assert engine.fixed_spot_releases() == []


def test_released_spot_is_next_after_flex_pool(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "after_flex.db")
    accepted = engine.release_fixed_spot("F2", TUESDAY, THURSDAY)
    assert isinstance(accepted, FixedReleaseAccepted)

    first = engine.request_reservation("alice", WEDNESDAY)
    second = engine.request_reservation("bob", WEDNESDAY)
    third = engine.request_reservation("carol", WEDNESDAY)

    assert isinstance(first, Confirmed) and first.spot_id == "1"
    assert isinstance(second, Confirmed) and second.spot_id == "F2"
    assert isinstance(third, Waitlisted)


def test_release_only_covers_its_dates(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "covered_dates.db")
    engine.release_fixed_spot("F1", WEDNESDAY, WEDNESDAY)
    engine.request_reservation("alice", TUESDAY)

    outcome = engine.request_reservation("bob", TUESDAY)

    assert isinstance(outcome, Waitlisted)


def test_release_hands_spot_to_waitlist_head(tmp_path):
    notifier = RecordingNotifier()
    engine, repository, _ = _build_engine(tmp_path, "handover.db", notifier=notifier)
    engine.request_reservation("alice", WEDNESDAY)
    engine.request_reservation("bob", WEDNESDAY)
    engine.request_reservation("carol", WEDNESDAY)

    accepted = engine.release_fixed_spot("F1", MONDAY, THURSDAY)

    assert isinstance(accepted, FixedReleaseAccepted)
    assert [(item.date, item.spot_id, item.user_id) for item in accepted.handovers] == [
        (WEDNESDAY, "F1", "bob")
    ]
    assert repository.get_reservation("bob", WEDNESDAY).spot_id == "F1"
    assert [(entry.user_id, entry.position) for entry in repository.list_waitlist(WEDNESDAY)] == [
        ("carol", 1)
    ]
    assert notifier.messages[-1][0] == "bob"


def test_withdraw_removes_current_and_future_releases_only(tmp_path):
    engine, repository, clock = _build_engine(tmp_path, "withdraw.db")
    repository.create_fixed_spot_release("F1", date(2026, 2, 23), date(2026, 2, 27))
    engine.release_fixed_spot("F1", TUESDAY, THURSDAY)

    removed = engine.withdraw_fixed_spot_release("F1")

    assert removed == 1
    remaining = engine.fixed_spot_releases("F1")
    assert [(item.start_date, item.end_date) for item in remaining] == [
        (date(2026, 2, 23), date(2026, 2, 27))
    ]


def test_released_spot_reservation_survives_withdraw(tmp_path):
    engine, repository, _ = _build_engine(tmp_path, "withdraw_keeps.db")
    engine.release_fixed_spot("F1", TUESDAY, TUESDAY)
    engine.request_reservation("alice", TUESDAY)
    engine.request_reservation("bob", TUESDAY)

    engine.withdraw_fixed_spot_release("F1")

    assert repository.get_reservation("bob", TUESDAY).spot_id == "F1"
    kinds = {row.spot_id: row.kind for row in engine.day_status(TUESDAY)}
    assert kinds == {"1": "flex", "F1": "retired"}


def test_day_status_marks_released_fixed_spots(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "day_status.db")
    engine.release_fixed_spot("F2", TUESDAY, TUESDAY)
    engine.request_reservation("alice", TUESDAY, display_name="Alice")

    rows = engine.day_status(TUESDAY)

    assert [(row.spot_id, row.kind, row.occupant_id) for row in rows] == [
        ("1", "flex", "alice"),
        ("F2", "released_fixed", None),
    ]
    assert rows[0].occupant_name == "Alice"


def test_overlay_lists_releases_covering_a_date(tmp_path):
    _, repository, _ = _build_engine(tmp_path, "overlay.db")
    overlay = FixedSpotOverlay(repository)

    overlay.release("F2", MONDAY, WEDNESDAY, today=MONDAY)
    overlay.release("F1", TUESDAY, TUESDAY, today=MONDAY)

    assert overlay.released_on(TUESDAY) == ["F1", "F2"]
    assert overlay.released_on(THURSDAY) == []


def test_set_fixed_spots_replaces_pool(tmp_path):
    engine, _, _ = _build_engine(tmp_path, "set_fixed.db")

    assert engine.set_fixed_spots(["F9", " F3 ", ""]) == ["F3", "F9"]
    outcome = engine.release_fixed_spot("F1", TUESDAY, TUESDAY)
    assert isinstance(outcome, Rejected)
    assert outcome.reason == RejectionReason.NOT_FIXED_SPOT
