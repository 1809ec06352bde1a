from datetime import datetime, timedelta

import pytest

from ParkReserve.api.app import build_components
from ParkReserve.api.clock import FixedClock
from ParkReserve.api.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamError,
    ValidationError
)
from ParkReserve.api import events
from ParkReserve.api.events import InMemoryEventSink
from ParkReserve.api.Models.AllocationResult import AllocationStatus
from ParkReserve.api.Models.Reservation import ReservationStatus
from ParkReserve.api.Models.ReservationRequest import ReservationRequest, VehicleInfo
from ParkReserve.api.Models.Spot import Spot, SpotType
from ParkReserve.api.settings import Settings

NOW = datetime(2026, 10, 19, 6, 0)
START = datetime(2026, 10, 19, 10, 0)


def _stack(tmp_path, spots=1):
    sink = InMemoryEventSink()
    clock = FixedClock(NOW)
    settings = Settings(db_dir=str(tmp_path), log_dir=str(tmp_path / "logs"), sweeper_enabled=False)
    c = build_components(settings, clock=clock, sink=sink)
    for i in range(spots):
        c.spots.add_spot(Spot(None, f"A{i + 1}", SpotType.REGULAR, [], "main", 0, False, True, NOW))
    return c, clock, sink


def _book(c, user="u1", start=START, minutes=240, allow_waitlist=False):
    return c.allocation.allocate(ReservationRequest(
        user_id=user,
        spot_type=SpotType.REGULAR,
        start_time=start,
        end_time=start + timedelta(minutes=minutes),
        vehicle=VehicleInfo(license_plate=f"{user}-PLATE"),
        allow_waitlist=allow_waitlist,
    ))


def test_cancel_with_full_notice_refunds_everything(tmp_path):
    c, clock, sink = _stack(tmp_path)
    booked = _book(c)
    assert booked.quote.total_estimate == 20.00

    result = c.manager.cancel(booked.reservation_id, "u1", reason="Plans changed")

    assert result.success
    assert result.refund_amount == 20.00
    stored = c.manager.get_reservation(booked.reservation_id)
    assert stored.status == ReservationStatus.CANCELLED
    assert stored.cancellation_reason == "Plans changed"
    assert sink.of_type(events.RESERVATION_CANCELLED)[0]["data"]["refund_amount"] == 20.00

    c.db.close_connection()


def test_late_cancellation_refunds_half(tmp_path):
    c, clock, _ = _stack(tmp_path)
    booked = _book(c)

    clock.set(START - timedelta(minutes=10))
    result = c.manager.cancel(booked.reservation_id, "u1")

    assert 0.0 <= result.refund_amount <= 20.00
    assert result.refund_amount == 10.00

    c.db.close_connection()


def test_cancel_after_start_refunds_nothing(tmp_path):
    c, clock, _ = _stack(tmp_path)
    booked = _book(c)

    clock.set(START + timedelta(minutes=5))
    assert c.manager.cancel(booked.reservation_id, "u1").refund_amount == 0.0

    c.db.close_connection()


def test_cancel_waitlisted_refunds_nothing(tmp_path):
    c, _, _ = _stack(tmp_path)
    _book(c, "u1")
    waitlisted = _book(c, "u2", allow_waitlist=True)

    result = c.manager.cancel(waitlisted.reservation_id, "u2")

    assert result.refund_amount == 0.0
    assert c.manager.get_reservation(waitlisted.reservation_id).status == ReservationStatus.CANCELLED

    c.db.close_connection()


def test_cancel_checks_ownership(tmp_path):
    c, _, _ = _stack(tmp_path)
    booked = _book(c)

    with pytest.raises(AuthorizationError) as exc:
        c.manager.cancel(booked.reservation_id, "someone-else")
    assert exc.value.code == "NOT_RESERVATION_OWNER"
    assert c.manager.get_reservation(booked.reservation_id).status == ReservationStatus.CONFIRMED

    assert c.manager.cancel(booked.reservation_id, "admin", override=True).success

    c.db.close_connection()


def test_cancel_unknown_and_terminal(tmp_path):
    c, _, _ = _stack(tmp_path)
    booked = _book(c)

    with pytest.raises(NotFoundError):
        c.manager.cancel(9999, "u1")

    c.manager.cancel(booked.reservation_id, "u1")
    with pytest.raises(InvalidTransitionError):
        c.manager.cancel(booked.reservation_id, "u1")

    c.db.close_connection()


def test_cancel_promotes_waitlisted_request(tmp_path):
    c, _, sink = _stack(tmp_path)
    booked = _book(c, "u1", minutes=120)
    waitlisted = _book(c, "u2", minutes=120, allow_waitlist=True)
    assert waitlisted.status == AllocationStatus.WAITLISTED

    c.manager.cancel(booked.reservation_id, "u1")

    promoted = c.manager.get_reservation(waitlisted.reservation_id)
    assert promoted.status == ReservationStatus.CONFIRMED
    assert promoted.spot_id == booked.spot_id
    assert promoted.quoted_total == 10.00
    assert len(sink.of_type(events.RESERVATION_PROMOTED)) == 1

    c.db.close_connection()


def test_promotion_is_fifo(tmp_path):
    c, clock, _ = _stack(tmp_path)
    booked = _book(c, "u1", minutes=120)
    first = _book(c, "u2", minutes=120, allow_waitlist=True)
    clock.advance(minutes=1)
    second = _book(c, "u3", minutes=120, allow_waitlist=True)

    promoted = c.manager.promote_into(booked.spot_id, START, START + timedelta(hours=2))
    assert promoted == []  # spot is still held by u1

    c.manager.cancel(booked.reservation_id, "u1")

    assert c.manager.get_reservation(first.reservation_id).status == ReservationStatus.CONFIRMED
    assert c.manager.get_reservation(second.reservation_id).status == ReservationStatus.WAITLISTED
    assert c.manager.waitlist_position(second.reservation_id) == 1

    c.db.close_connection()


def test_promote_waitlist_uses_new_capacity(tmp_path):
    c, _, _ = _stack(tmp_path)
    _book(c, "u1")
    waitlisted = _book(c, "u2", allow_waitlist=True)

    assert c.manager.promote_waitlist() == []
    c.spots.add_spot(Spot(None, "B1", SpotType.LARGE, [], "main", 0, False, True, NOW))

    assert c.manager.promote_waitlist() == [waitlisted.reservation_id]
    promoted = c.manager.get_reservation(waitlisted.reservation_id)
    assert promoted.spot_type == SpotType.LARGE
    assert promoted.quoted_rate == 7.50

    c.db.close_connection()


def test_check_in_and_check_out(tmp_path):
    c, clock, sink = _stack(tmp_path)
    booked = _book(c)

    with pytest.raises(ValidationError) as exc:
        c.manager.check_in(booked.reservation_id, "u1")
    assert exc.value.code == "CHECK_IN_TOO_EARLY"

    with pytest.raises(AuthorizationError):
        c.manager.check_in(booked.reservation_id, "u2")

    clock.set(START - timedelta(minutes=10))
    active = c.manager.check_in(booked.reservation_id, "u1")
    assert active.status == ReservationStatus.ACTIVE
    assert active.checked_in_at == START - timedelta(minutes=10)
    assert c.spots.get_spot(booked.spot_id).is_occupied

    with pytest.raises(InvalidTransitionError):
        c.manager.check_in(booked.reservation_id, "u1")

    clock.set(START + timedelta(hours=1))
    done = c.manager.check_out(booked.reservation_id, "u1")
    assert done.status == ReservationStatus.COMPLETED
    assert not c.spots.get_spot(booked.spot_id).is_occupied

    assert len(sink.of_type(events.RESERVATION_ACTIVATED)) == 1
    assert len(sink.of_type(events.RESERVATION_COMPLETED)) == 1

    c.db.close_connection()


def test_check_out_requires_active(tmp_path):
    c, _, _ = _stack(tmp_path)
    booked = _book(c)

    with pytest.raises(InvalidTransitionError):
        c.manager.check_out(booked.reservation_id, "u1")

    c.db.close_connection()


def test_mark_no_shows_after_grace_period(tmp_path):
    c, clock, sink = _stack(tmp_path)
    booked = _book(c)
    waitlisted = _book(c, "u2", start=START + timedelta(hours=1), minutes=60, allow_waitlist=True)

    clock.set(START + timedelta(minutes=29))
    assert c.manager.mark_no_shows() == 0

    clock.set(START + timedelta(minutes=31))
    assert c.manager.mark_no_shows() == 1
    assert c.manager.mark_no_shows() == 0

    assert c.manager.get_reservation(booked.reservation_id).status == ReservationStatus.NO_SHOW
    assert len(sink.of_type(events.RESERVATION_NO_SHOW)) == 1
    # the freed spot goes to the waitlist
    assert c.manager.get_reservation(waitlisted.reservation_id).status == ReservationStatus.CONFIRMED

    c.db.close_connection()


def test_checked_in_reservations_are_not_no_shows(tmp_path):
    c, clock, _ = _stack(tmp_path)
    booked = _book(c)

    clock.set(START)
    c.manager.check_in(booked.reservation_id, "u1")
    clock.set(START + timedelta(hours=1))

    assert c.manager.mark_no_shows() == 0

    c.db.close_connection()


def test_expire_stale(tmp_path):
    c, clock, sink = _stack(tmp_path, spots=2)
    unused = _book(c, "u1")
    used = _book(c, "u2")

    clock.set(START)
    c.manager.check_in(used.reservation_id, "u2")

    clock.set(START + timedelta(hours=5))
    assert c.manager.expire_stale() == 2
    assert c.manager.expire_stale() == 0

    assert c.manager.get_reservation(unused.reservation_id).status == ReservationStatus.EXPIRED
    assert c.manager.get_reservation(used.reservation_id).status == ReservationStatus.COMPLETED
    assert not c.spots.get_spot(used.spot_id).is_occupied
    assert len(sink.of_type(events.RESERVATION_EXPIRED)) == 1

    c.db.close_connection()


def test_dismiss_stale_waitlist(tmp_path):
    c, clock, sink = _stack(tmp_path)
    _book(c, "u1")
    waitlisted = _book(c, "u2", allow_waitlist=True)

    assert c.manager.dismiss_stale_waitlist() == 0
    clock.set(START + timedelta(minutes=1))
    assert c.manager.dismiss_stale_waitlist() == 1

    dismissed = c.manager.get_reservation(waitlisted.reservation_id)
    assert dismissed.status == ReservationStatus.DISMISSED
    assert dismissed.waitlist_position is None
    assert c.manager.waitlist_position(waitlisted.reservation_id) is None
    assert len(sink.of_type(events.RESERVATION_DISMISSED)) == 1

    c.db.close_connection()


def test_user_reservations_newest_first(tmp_path):
    c, _, _ = _stack(tmp_path, spots=2)
    early = _book(c, "u1", start=START)
    late = _book(c, "u1", start=START + timedelta(hours=6))
    _book(c, "u2")

    ids = [r.id for r in c.manager.user_reservations("u1")]
    assert ids == [late.reservation_id, early.reservation_id]
    assert c.manager.user_reservations("u1", ReservationStatus.CANCELLED) == []

    with pytest.raises(NotFoundError):
        c.manager.get_reservation(424242)

    c.db.close_connection()


def test_reservation_stats(tmp_path):
    c, clock, _ = _stack(tmp_path, spots=2)
    done = _book(c, "u1", minutes=120)
    _book(c, "u2", minutes=120)
    _book(c, "u3", minutes=120, allow_waitlist=True)

    clock.set(START)
    c.manager.check_in(done.reservation_id, "u1")
    clock.set(START + timedelta(hours=2))
    c.manager.check_out(done.reservation_id, "u1")

    stats = c.manager.reservation_stats("day")
    assert stats["total_reservations"] == 3
    assert stats["by_status"]["COMPLETED"] == 1
    assert stats["by_status"]["CONFIRMED"] == 1
    assert stats["waitlisted"] == 1
    assert stats["revenue"] == 10.00
    assert stats["average_duration"] == 120
    assert stats["occupancy_rate"] == 0.0

    with pytest.raises(ValidationError):
        c.manager.reservation_stats("year")

    c.db.close_connection()


def _failing_quote(ctx, occupancy=None):
    raise UpstreamError("Failed to calculate pricing", "PRICING_FAILED")


def test_cancel_succeeds_when_promotion_fails(tmp_path, monkeypatch):
    c, _, sink = _stack(tmp_path)
    booked = _book(c, "u1", minutes=120)
    waitlisted = _book(c, "u2", minutes=120, allow_waitlist=True)
    monkeypatch.setattr(c.pricing, "quote", _failing_quote)

    result = c.manager.cancel(booked.reservation_id, "u1")

    assert result.success
    assert result.refund_amount > 0
    assert c.manager.get_reservation(booked.reservation_id).status == ReservationStatus.CANCELLED
    assert c.manager.get_reservation(waitlisted.reservation_id).status == ReservationStatus.WAITLISTED
    assert len(sink.of_type(events.RESERVATION_CANCELLED)) == 1

    # the next expiry sweep picks up the freed window
    monkeypatch.undo()
    assert c.manager.promote_waitlist() == [waitlisted.reservation_id]

    c.db.close_connection()


def test_no_show_sweep_continues_when_promotion_fails(tmp_path, monkeypatch):
    c, clock, sink = _stack(tmp_path, spots=2)
    first = _book(c, "u1")
    second = _book(c, "u2")
    _book(c, "u3", start=START + timedelta(hours=1), minutes=60, allow_waitlist=True)
    monkeypatch.setattr(c.pricing, "quote", _failing_quote)

    clock.set(START + timedelta(minutes=31))
    assert c.manager.mark_no_shows() == 2

    assert c.manager.get_reservation(first.reservation_id).status == ReservationStatus.NO_SHOW
    assert c.manager.get_reservation(second.reservation_id).status == ReservationStatus.NO_SHOW
    assert len(sink.of_type(events.RESERVATION_NO_SHOW)) == 2

    c.db.close_connection()
