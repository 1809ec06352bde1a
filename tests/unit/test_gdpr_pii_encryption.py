import base64
import sqlite3
from datetime import datetime

import pytest

from ParkReserve.api.crypto_utils import PlateCipher, load_key, mask_value
from ParkReserve.api.DBConnection import DBConnection
from ParkReserve.api.DataAccess.AccessReservations import AccessReservations
from ParkReserve.api.Models.Reservation import Reservation, ReservationStatus
from ParkReserve.api.Models.Spot import SpotType


# Fixtures
@pytest.fixture
def key_b64():
    return base64.b64encode(b"\x01" * 32).decode("ascii")


@pytest.fixture
def cipher(key_b64):
    return PlateCipher.from_b64(key_b64)


def test_encrypt_decrypt_roundtrip(cipher):
    encrypted = cipher.encrypt("AB-123-CD")

    assert encrypted != "AB-123-CD"
    assert cipher.decrypt(encrypted) == "AB-123-CD"


def test_encryption_is_non_deterministic(cipher):
    assert cipher.encrypt("AB-123-CD") != cipher.encrypt("AB-123-CD")  # random nonce


def test_decryption_fails_with_wrong_key(cipher):
    encrypted = cipher.encrypt("AB-123-CD")
    other = PlateCipher(b"\x02" * 32)

    with pytest.raises(Exception):
        other.decrypt(encrypted)


def test_load_key_rejects_bad_input():
    with pytest.raises(RuntimeError):
        load_key("")
    with pytest.raises(RuntimeError):
        load_key("not base64!!")
    with pytest.raises(RuntimeError):
        load_key(base64.b64encode(b"short").decode("ascii"))


def test_mask_value():
    assert mask_value("AB-123-CD") == "AB*******"
    assert mask_value("AB") == "**"
    assert mask_value(None) is None


# Encryption at rest
def test_license_plate_is_not_stored_in_plaintext(tmp_path, cipher):
    conn = DBConnection(str(tmp_path / "test.db"))
    access_reservations = AccessReservations(conn, cipher=cipher)

    now = datetime(2026, 10, 19, 6, 0)
    reservation = Reservation(
        id=None,
        user_id="u1",
        spot_id=None,
        spot_type=SpotType.REGULAR,
        features=[],
        start_time=datetime(2026, 10, 19, 10, 0),
        end_time=datetime(2026, 10, 19, 12, 0),
        status=ReservationStatus.WAITLISTED,
        license_plate="AB-123-CD",
        created_at=now,
    )
    access_reservations.add_waitlisted(reservation)

    raw = sqlite3.connect(str(tmp_path / "test.db"))
    stored = raw.execute("SELECT license_plate FROM reservations").fetchone()[0]
    raw.close()

    assert stored != "AB-123-CD"

    fetched = access_reservations.get_reservation(reservation.id)
    assert fetched.license_plate == "AB-123-CD"

    conn.close_connection()
