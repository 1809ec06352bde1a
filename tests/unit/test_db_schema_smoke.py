from ParkReserve.api.DBConnection import DBConnection
from ParkReserve.api.DataAccess.AccessDiscountCodes import AccessDiscountCodes


def test_dbconnection_creates_core_tables(tmp_path):
    db_path = tmp_path / "test.db"
    conn = DBConnection(str(db_path))

    conn.cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    table_names = {row[0] for row in conn.cursor.fetchall()}

    assert "spots" in table_names
    assert "spot_type_rates" in table_names
    assert "memberships" in table_names
    assert "reservations" in table_names
    assert "sweeper_leases" in table_names

    conn.close_connection()


def test_discount_tables_are_created_on_first_use(tmp_path):
    conn = DBConnection(str(tmp_path / "test.db"))
    AccessDiscountCodes(conn)

    conn.cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    table_names = {row[0] for row in conn.cursor.fetchall()}

    assert "discount_codes" in table_names
    assert "discount_code_usage" in table_names

    conn.close_connection()


def test_transaction_rolls_back_on_error(tmp_path):
    conn = DBConnection(str(tmp_path / "test.db"))

    try:
        with conn.transaction() as cursor:
            cursor.execute(
                "INSERT INTO memberships (user_id, tier) VALUES (?, ?)", ["u1", "VIP"]
            )
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    conn.cursor.execute("SELECT COUNT(*) FROM memberships")
    assert conn.cursor.fetchone()[0] == 0

    conn.close_connection()
