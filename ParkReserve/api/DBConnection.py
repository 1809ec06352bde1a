import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime

# Vaste breedte, zodat datums als tekst vergeleken kunnen worden in SQL
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def to_db_time(value: datetime):
    if value is None:
        return None
    return value.strftime(DATETIME_FORMAT)


def from_db_time(value):
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.strptime(value, DATETIME_FORMAT)
    except ValueError:
        return datetime.fromisoformat(value)


class DBConnection:

    def __init__(self, database_path, timeout: float = 5.0):
        self.connection = sqlite3.connect(database_path, timeout=timeout, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self.cursor = self.connection.cursor()
        # One connection is shared by all request workers
        self.lock = threading.RLock()

        self.cursor.execute("PRAGMA foreign_keys = ON")
        self.connection.commit()

        self.create_database_and_tables()


    def create_database_and_tables(self):
        tables_query = """
        CREATE TABLE IF NOT EXISTS spots(
            id INTEGER PRIMARY KEY,
            spot_number VARCHAR(255) NOT NULL UNIQUE,
            spot_type VARCHAR(32) NOT NULL,
            features TEXT NOT NULL DEFAULT '',
            zone VARCHAR(255) NOT NULL DEFAULT 'main',
            floor INTEGER NOT NULL DEFAULT 0,
            is_occupied BOOL NOT NULL DEFAULT 0,
            is_active BOOL NOT NULL DEFAULT 1,
            created_at DATETIME NOT NULL
        );

        CREATE TABLE IF NOT EXISTS spot_type_rates(
            spot_type VARCHAR(32) PRIMARY KEY,
            hourly_rate DECIMAL(10,2) NOT NULL
        );

        CREATE TABLE IF NOT EXISTS memberships(
            user_id VARCHAR(255) PRIMARY KEY,
            tier VARCHAR(32) NOT NULL
        );

        CREATE TABLE IF NOT EXISTS reservations(
            id INTEGER PRIMARY KEY,
            user_id VARCHAR(255) NOT NULL,
            spot_id INTEGER,
            spot_type VARCHAR(32) NOT NULL,
            features TEXT NOT NULL DEFAULT '',
            start_time DATETIME NOT NULL,
            end_time DATETIME NOT NULL,
            status VARCHAR(32) NOT NULL,
            license_plate VARCHAR(255) NOT NULL,
            make VARCHAR(255),
            model VARCHAR(255),
            color VARCHAR(255),
            notes TEXT,
            quoted_rate DECIMAL(10,2) NOT NULL DEFAULT 0,
            quoted_total DECIMAL(10,2) NOT NULL DEFAULT 0,
            membership_tier VARCHAR(32),
            discount_code VARCHAR(255),
            cancellation_reason TEXT,
            waitlist_position INTEGER,
            checked_in_at DATETIME,
            created_at DATETIME NOT NULL,
            updated_at DATETIME NOT NULL,
            FOREIGN KEY (spot_id) REFERENCES spots(id)
        );

        CREATE INDEX IF NOT EXISTS idx_reservations_spot_window
            ON reservations (spot_id, status, start_time, end_time);

        CREATE INDEX IF NOT EXISTS idx_reservations_status
            ON reservations (status, start_time);

        CREATE TABLE IF NOT EXISTS sweeper_leases(
            name VARCHAR(255) PRIMARY KEY,
            owner VARCHAR(255) NOT NULL,
            expires_at DATETIME NOT NULL
        );
        """

        with self.lock:
            self.cursor.executescript(tables_query)
            self.connection.commit()


    @contextmanager
    def transaction(self):
        """
        Serialized write transaction.

        BEGIN IMMEDIATE takes the sqlite write lock up front, so a check
        followed by a write cannot interleave with another writer, also not
        from another process using the same database file.
        """
        with self.lock:
            if self.connection.in_transaction:
                self.connection.commit()
            cursor = self.connection.cursor()
            cursor.execute("BEGIN IMMEDIATE")
            try:
                yield cursor
            except BaseException:
                self.connection.rollback()
                raise
            else:
                self.connection.commit()
            finally:
                cursor.close()


    def close_connection(self):
        with self.lock:
            self.cursor.close()
            self.connection.close()
