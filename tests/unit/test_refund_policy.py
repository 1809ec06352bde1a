from datetime import datetime, timedelta

import pytest

from ParkReserve.api.Models.Reservation import Reservation, ReservationStatus
from ParkReserve.api.Models.Spot import SpotType
from ParkReserve.api.refund_policy import RefundPolicy
from ParkReserve.api.settings import Settings

START = datetime(2026, 10, 19, 10, 0)


def _reservation(status=ReservationStatus.CONFIRMED, total=20.0):
    return Reservation(
        id=1,
        user_id="u1",
        spot_id=1,
        spot_type=SpotType.REGULAR,
        features=[],
        start_time=START,
        end_time=START + timedelta(hours=4),
        status=status,
        license_plate="AB-123-CD",
        created_at=START - timedelta(days=1),
        quoted_rate=5.0,
        quoted_total=total,
    )


@pytest.mark.parametrize("before_start,expected", [
    (timedelta(hours=5), 20.00),
    (timedelta(hours=2), 20.00),
    (timedelta(hours=1, minutes=59), 10.00),
    (timedelta(minutes=10), 10.00),
    (timedelta(0), 0.0),
    (-timedelta(minutes=30), 0.0),
])
def test_default_refund_schedule(before_start, expected):
    policy = RefundPolicy()
    assert policy.refund_amount(_reservation(), START - before_start) == expected


def test_waitlisted_entries_are_not_refunded():
    policy = RefundPolicy()
    assert policy.refund_amount(_reservation(ReservationStatus.WAITLISTED), START - timedelta(days=1)) == 0.0


def test_refund_never_exceeds_quoted_total():
    policy = RefundPolicy(partial_refund_percent=100)
    for before in (timedelta(days=3), timedelta(minutes=1)):
        amount = policy.refund_amount(_reservation(total=13.5), START - before)
        assert 0.0 <= amount <= 13.5


def test_policy_from_settings():
    policy = RefundPolicy.from_settings(Settings(full_refund_hours=24, partial_refund_percent=25))

    assert policy.refund_amount(_reservation(), START - timedelta(hours=3)) == 5.00
    assert policy.refund_amount(_reservation(), START - timedelta(hours=25)) == 20.00


def test_invalid_percent_is_rejected():
    with pytest.raises(ValueError):
        RefundPolicy(partial_refund_percent=150)
