from datetime import datetime

import pytest

pytest.importorskip("httpx")
from fastapi.testclient import TestClient

from ParkReserve.api.app import create_app
from ParkReserve.api.clock import FixedClock
from ParkReserve.api.events import InMemoryEventSink
from ParkReserve.api.Models.Spot import Spot, SpotType
from ParkReserve.api.settings import Settings

NOW = datetime(2026, 10, 19, 6, 0)


@pytest.fixture()
def api(tmp_path):
    clock = FixedClock(NOW)
    settings = Settings(db_dir=str(tmp_path), log_dir=str(tmp_path / "logs"), sweeper_enabled=False)
    app = create_app(settings, clock=clock, sink=InMemoryEventSink())
    components = app.state.components
    components.spots.add_spot(Spot(None, "A1", SpotType.REGULAR, [], "main", 0, False, True, NOW))

    with TestClient(app) as c:
        yield c, clock


def _body(**overrides):
    body = {
        "spot_type": "standard",
        "start_time": "2026-10-19T10:00:00",
        "end_time": "2026-10-19T14:00:00",
        "vehicle": {"license_plate": "AB-123-CD", "make": "Toyota"},
    }
    body.update(overrides)
    return body


def test_root_and_health(api):
    client, _ = api
    assert client.get("/").status_code == 200
    assert client.get("/health").json()["status"] == "ok"


def test_reservation_lifecycle(api):
    client, clock = api
    headers = {"X-User-Id": "user-1"}

    r = client.post("/reservations", json=_body(), headers=headers)
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["status"] == "CONFIRMED"
    assert created["quote"]["total_estimate"] == 20.0
    reservation_id = created["reservation_id"]

    r = client.get(f"/reservations/{reservation_id}", headers=headers)
    assert r.status_code == 200
    assert r.json()["license_plate"] == "AB*******"
    assert r.json()["spot_type"] == "REGULAR"

    r = client.get("/reservations", headers=headers)
    assert [res["id"] for res in r.json()] == [reservation_id]

    clock.set(datetime(2026, 10, 19, 9, 50))
    r = client.post(f"/reservations/{reservation_id}/check-in", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "ACTIVE"

    clock.set(datetime(2026, 10, 19, 13, 0))
    r = client.post(f"/reservations/{reservation_id}/check-out", headers=headers)
    assert r.json()["status"] == "COMPLETED"

    stats = client.get("/reservations/stats", params={"timeframe": "week"}).json()
    assert stats["by_status"]["COMPLETED"] == 1
    assert stats["revenue"] == 20.0


def test_cancel_returns_refund(api):
    client, _ = api
    headers = {"X-User-Id": "user-1"}
    reservation_id = client.post("/reservations", json=_body(), headers=headers).json()["reservation_id"]

    r = client.post(f"/reservations/{reservation_id}/cancel", json={"reason": "Sick"}, headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Reservation cancelled", "refund_amount": 20.0}

    r = client.post(f"/reservations/{reservation_id}/cancel", headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_TRANSITION"


def test_other_user_cannot_touch_reservation(api):
    client, _ = api
    reservation_id = client.post(
        "/reservations", json=_body(), headers={"X-User-Id": "owner"}
    ).json()["reservation_id"]

    r = client.get(f"/reservations/{reservation_id}", headers={"X-User-Id": "intruder"})
    assert r.status_code == 403
    assert r.json()["code"] == "NOT_RESERVATION_OWNER"

    r = client.post(f"/reservations/{reservation_id}/cancel", headers={"X-User-Id": "intruder"})
    assert r.status_code == 403


def test_waitlist_and_unavailable(api):
    client, _ = api
    client.post("/reservations", json=_body(), headers={"X-User-Id": "first"})

    r = client.post("/reservations", json=_body(), headers={"X-User-Id": "second"})
    assert r.status_code == 409
    assert r.json()["status"] == "UNAVAILABLE"

    r = client.post("/reservations", json=_body(allow_waitlist=True), headers={"X-User-Id": "second"})
    assert r.status_code == 202
    waitlisted = r.json()
    assert waitlisted["waitlist_position"] == 1

    r = client.get(
        f"/reservations/{waitlisted['reservation_id']}/waitlist-position", headers={"X-User-Id": "second"}
    )
    assert r.json()["position"] == 1


def test_spot_conflicts_endpoint(api):
    client, _ = api
    client.post("/reservations", json=_body(), headers={"X-User-Id": "first"})

    r = client.get("/spots/1/conflicts", params={
        "start_time": "2026-10-19T13:00:00", "end_time": "2026-10-19T15:00:00"
    })
    assert r.status_code == 200
    assert r.json()[0]["overlap_minutes"] == 60


def test_unknown_reservation_is_404(api):
    client, _ = api
    r = client.get("/reservations/999", headers={"X-User-Id": "user-1"})
    assert r.status_code == 404
    assert r.json() == {"error": "Reservation not found", "code": "RESERVATION_NOT_FOUND"}
