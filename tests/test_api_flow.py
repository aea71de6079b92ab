from __future__ import annotations

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from fastapi.testclient import TestClient

from parkbot.controllers.admin_controller import router as admin_router
from parkbot.controllers.reservation_controller import router as reservation_router
from parkbot.repository.data_repository import DataRepository
from parkbot.services.auth_service import AuthService
from parkbot.services.reservation_service import ReservationEngine
from parkbot.utils.clock import ManualClock, ManualTimerFactory
from parkbot.utils.config import get_settings


MVD = ZoneInfo("America/Montevideo")
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=MVD)


def _build_test_settings(tmp_path, filename: str, admin_token: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        timezone="America/Montevideo",
        cutover_weekday=4,
        cutover_hour=17,
        cutover_minute=0,
        fairness_window_minutes=15,
        supervisor_user_id=None,
        admin_token=admin_token,
    )


def _build_test_app(tmp_path, admin_token: str) -> tuple[FastAPI, ManualClock, ManualTimerFactory]:
    settings = _build_test_settings(tmp_path, "api_flow.db", admin_token)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_spots_if_empty(("1", "2"), ("F1",))

    clock = ManualClock(NOW)
    timers = ManualTimerFactory(clock)
    engine = ReservationEngine(
        repository=repository,
        settings=settings,
        clock=clock,
        timers=timers,
        rng=random.Random(5),
    )

    app = FastAPI()
    app.include_router(reservation_router)
    app.include_router(admin_router)
    app.state.repository = repository
    app.state.engine = engine
    app.state.auth_service = AuthService(settings=settings, clock=clock)
    return app, clock, timers


def _login(client: TestClient, admin_token: str) -> dict[str, str]:
    response = client.post("/login", json={"admin_token": admin_token})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_booking_end_to_end_flow(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    first = client.post("/reservations", json={"user_id": "A", "date": "2026-03-03"})
    assert first.status_code == 200
    assert first.json() == {"outcome": "confirmed", "date": "2026-03-03", "spot_id": "1"}

    client.post("/reservations", json={"user_id": "B", "date": "2026-03-03"})
    third = client.post("/reservations", json={"user_id": "C", "date": "2026-03-03", "display_name": "Cleo"})
    assert third.json() == {"outcome": "waitlisted", "date": "2026-03-03", "position": 1}

    waitlist = client.get("/days/2026-03-03/waitlist")
    assert waitlist.json()["entries"] == [{"user_id": "C", "position": 1, "display_name": "Cleo"}]

    released = client.delete("/reservations/A/2026-03-03")
    assert released.status_code == 200
    assert released.json()["reassigned_to"] == "C"

    day = client.get("/days/2026-03-03").json()
    assert day["free_spots"] == 0
    assert day["waitlist_length"] == 0
    assert [(spot["spot_id"], spot["occupant_id"]) for spot in day["spots"]] == [("1", "C"), ("2", "B")]

    mine = client.get("/users/C/reservations").json()
    assert [(item["date"], item["spot_id"]) for item in mine["reservations"]] == [("2026-03-03", "1")]


def test_rejections_are_returned_as_outcomes(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    weekend = client.post("/reservations", json={"user_id": "A", "date": "2026-03-07"})
    locked = client.post("/reservations", json={"user_id": "A", "date": "2026-03-10"})
    nothing = client.delete("/reservations/A/2026-03-04")

    assert weekend.status_code == 200
    assert weekend.json()["reason"] == "WEEKEND_DATE"
    assert locked.json()["reason"] == "NEXT_CYCLE_LOCKED"
    assert nothing.json()["outcome"] == "rejected"
    assert nothing.json()["reason"] == "NO_ACTIVE_RESERVATION"


def test_malformed_payloads_fail_validation(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    assert client.post("/reservations", json={"user_id": "", "date": "2026-03-03"}).status_code == 422
    assert client.post("/reservations", json={"user_id": "A", "date": "not-a-date"}).status_code == 422
    assert client.post("/reservations/batch", json={"user_id": "A", "dates": []}).status_code == 422


def test_batch_request_and_week_view(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    batch = client.post(
        "/reservations/batch",
        json={"user_id": "A", "dates": ["2026-03-04", "2026-03-03"]},
    )
    assert [item["outcome"] for item in batch.json()["outcomes"]] == ["confirmed", "confirmed"]

    week = client.get("/week").json()
    assert [day["date"] for day in week["days"]] == [
        "2026-03-02",
        "2026-03-03",
        "2026-03-04",
        "2026-03-05",
        "2026-03-06",
    ]
    assert week["days"][1]["free_spots"] == 1

    released = client.post("/reservations/release", json={"user_id": "A", "dates": ["2026-03-03"]})
    assert released.json()["outcomes"][0]["outcome"] == "released"


def test_admin_endpoints_require_login(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    assert client.get("/stats").status_code == 401
    assert client.post("/login", json={"admin_token": "wrong"}).status_code == 401
    assert client.get("/stats", headers={"Authorization": "Bearer nope"}).status_code == 401

    headers = _login(client, "secret-admin-token")
    stats = client.get("/stats", headers=headers)
    assert stats.status_code == 200
    assert stats.json() == {
        "flex_spots": 2,
        "fixed_spots": 1,
        "reservations": 0,
        "waitlisted": 0,
        "queued": 0,
    }


def test_admin_inventory_and_fixed_release_flow(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)
    headers = _login(client, "secret-admin-token")

    client.post("/reservations", json={"user_id": "A", "date": "2026-03-04"})
    client.post("/reservations", json={"user_id": "B", "date": "2026-03-04"})
    client.post("/reservations", json={"user_id": "C", "date": "2026-03-04"})

    release = client.post(
        "/fixed-releases",
        json={"spot_id": "F1", "start_date": "2026-03-03", "end_date": "2026-03-05"},
        headers=headers,
    )
    assert release.status_code == 200
    body = release.json()
    assert body["outcome"] == "ok"
    assert body["handovers"] == [{"date": "2026-03-04", "spot_id": "F1", "user_id": "C"}]

    not_fixed = client.post(
        "/fixed-releases",
        json={"spot_id": "2", "start_date": "2026-03-03", "end_date": "2026-03-05"},
        headers=headers,
    )
    assert not_fixed.json()["reason"] == "NOT_FIXED_SPOT"

    inverted = client.post(
        "/fixed-releases",
        json={"spot_id": "F1", "start_date": "2026-03-05", "end_date": "2026-03-03"},
        headers=headers,
    )
    assert inverted.status_code == 422

    releases = client.get("/fixed-releases", headers=headers).json()["releases"]
    assert releases == [{"spot_id": "F1", "start_date": "2026-03-03", "end_date": "2026-03-05"}]
    withdrawn = client.delete("/fixed-releases/F1", headers=headers)
    assert withdrawn.json() == {"spot_id": "F1", "withdrawn": 1}

    flex = client.put("/spots/flex", json={"spot_ids": ["3", "1", "2"]}, headers=headers)
    assert flex.json() == {"spot_ids": ["1", "2", "3"]}
    duplicate = client.put("/spots/flex", json={"spot_ids": ["1", "1"]}, headers=headers)
    assert duplicate.status_code == 422

    deactivated = client.put("/spots/3/active", json={"active": False}, headers=headers)
    assert deactivated.json() == {"spot_id": "3", "active": False}
    assert client.put("/spots/99/active", json={"active": False}, headers=headers).status_code == 404

    fixed = client.put("/spots/fixed", json={"spot_ids": ["F2"]}, headers=headers)
    assert fixed.json() == {"spot_ids": ["F2"]}


def test_lottery_admin_endpoints(tmp_path):
    app, clock, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)
    headers = _login(client, "secret-admin-token")
    clock.set(datetime(2026, 3, 6, 17, 1, tzinfo=MVD))

    for user in ("A", "B", "C"):
        queued = client.post("/reservations", json={"user_id": user, "date": "2026-03-09"})
        assert queued.json()["outcome"] == "queued"

    queues = client.get("/lottery/queues", headers=headers).json()
    assert queues["window_open"] is True
    assert queues["queues"][0]["date"] == "2026-03-09"
    assert [item["user_id"] for item in queues["queues"][0]["requests"]] == ["A", "B", "C"]

    flushed = client.post("/lottery/flush", headers=headers).json()["results"]
    outcomes = sorted(item["result"]["outcome"] for item in flushed)
    assert outcomes == ["confirmed", "confirmed", "waitlisted"]

    client.post("/reservations", json={"user_id": "D", "date": "2026-03-10"})
    cleared = client.delete("/lottery/queues", headers=headers)
    assert cleared.json() == {"dropped": 1}


def test_cycle_reset_and_clear_endpoints(tmp_path):
    app, clock, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)
    headers = _login(client, "secret-admin-token")
    client.post("/reservations", json={"user_id": "A", "date": "2026-03-04"})

    clock.set(datetime(2026, 3, 6, 17, 0, tzinfo=MVD) + timedelta(minutes=30))
    client.post("/reservations", json={"user_id": "B", "date": "2026-03-09"})
    reset = client.post("/cycle/reset", headers=headers)
    assert reset.status_code == 200
    assert reset.json()["start_date"] == "2026-03-02"
    assert reset.json()["end_date"] == "2026-03-06"

    cleared = client.delete("/reservations", headers=headers)
    assert cleared.json() == {"reservations_cleared": 1, "waitlist_cleared": 0}


def test_admin_endpoints_open_without_configured_token(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "")
    client = TestClient(app)

    assert client.get("/spots/flex").json() == {"spot_ids": ["1", "2"]}
    assert client.post("/login", json={"admin_token": "anything"}).status_code == 401


def test_waitlist_endpoint_refuses_while_spots_are_free(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    early = client.post("/waitlist", json={"user_id": "A", "date": "2026-03-03"})
    client.post("/reservations", json={"user_id": "B", "date": "2026-03-03"})
    client.post("/reservations", json={"user_id": "C", "date": "2026-03-03"})
    joined = client.post("/waitlist", json={"user_id": "A", "date": "2026-03-03"})

    assert early.status_code == 200
    assert early.json()["reason"] == "SPOT_AVAILABLE"
    assert joined.json() == {"outcome": "waitlisted", "date": "2026-03-03", "position": 1}


def test_held_date_lock_does_not_stall_other_dates(tmp_path):
    app, _, _ = _build_test_app(tmp_path, "secret-admin-token")
    engine = app.state.engine
    held = threading.Event()
    release = threading.Event()

    def hold_tuesday() -> None:
        with engine._locks.hold(date(2026, 3, 3)):
            held.set()
            release.wait(timeout=10)

    holder = threading.Thread(target=hold_tuesday, daemon=True)
    holder.start()
    assert held.wait(timeout=5)
    try:
        with TestClient(app) as client, ThreadPoolExecutor(max_workers=1) as pool:
            blocked = pool.submit(
                client.post,
                "/reservations",
                json={"user_id": "A", "date": "2026-03-03"},
            )
            time.sleep(0.2)

            started = time.monotonic()
            other = client.post("/reservations", json={"user_id": "B", "date": "2026-03-04"})
            elapsed = time.monotonic() - started

            assert other.status_code == 200
            assert other.json()["outcome"] == "confirmed"
            assert not blocked.done()

            release.set()
            assert blocked.result(timeout=5).json()["outcome"] == "confirmed"
    finally:
        release.set()
        holder.join(timeout=5)

    assert elapsed < 2.0


def test_operator_session_expires_after_a_shift(tmp_path):
    app, clock, _ = _build_test_app(tmp_path, "secret-admin-token")
    client = TestClient(app)

    response = client.post("/login", json={"admin_token": "secret-admin-token", "operator_id": "ops-lucia"})
    body = response.json()
    headers = {"Authorization": f"Bearer {body['access_token']}"}

    assert body["operator_id"] == "ops-lucia"
    assert datetime.fromisoformat(body["expires_at"]) == NOW + timedelta(hours=8)
    assert client.get("/stats", headers=headers).status_code == 200

    clock.advance(timedelta(hours=8))
    expired = client.get("/stats", headers=headers)

    assert expired.status_code == 401
    assert "expired" in expired.json()["detail"]
