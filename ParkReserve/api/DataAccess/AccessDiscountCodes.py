from datetime import datetime
from typing import List, Optional, Dict, Any, Union
import json
import logging
import sqlite3
import threading

from ..DBConnection import to_db_time, from_db_time
from ..Models.DiscountCode import DiscountCode, DiscountCodeCreate

logger = logging.getLogger(__name__)


class AccessDiscountCodes:
    def __init__(self, connection):
        """Initialize with either a database connection, cursor, or DBConnection."""
        if hasattr(connection, 'connection') and hasattr(connection, 'cursor') and hasattr(connection, 'lock'):
            self.connection = connection.connection
            self.cursor = connection.connection.cursor()
            self.lock = connection.lock
        elif isinstance(connection, sqlite3.Connection):
            self.connection = connection
            self.cursor = connection.cursor()
            self.lock = threading.RLock()
        else:
            raise ValueError(
                "connection must be a sqlite3.Connection or DBConnection"
            )

        self._create_tables()

    def _create_tables(self):
        """Create necessary tables if they don't exist"""
        with self.lock:
            self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS discount_codes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE,
                discount_type TEXT NOT NULL,
                value REAL NOT NULL,
                min_amount REAL,
                max_discount REAL,
                valid_from TIMESTAMP,
                valid_until TIMESTAMP,
                usage_limit INTEGER,
                used_count INTEGER DEFAULT 0,
                applicable_spot_types TEXT,
                membership_tiers_only TEXT,
                is_active BOOLEAN DEFAULT 1,
                created_at TIMESTAMP NOT NULL
            )
            """)

            self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS discount_code_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code_id INTEGER NOT NULL,
                user_id TEXT NOT NULL,
                reservation_id INTEGER,
                amount_before_discount REAL NOT NULL,
                discount_amount REAL NOT NULL,
                used_at TIMESTAMP NOT NULL,
                FOREIGN KEY (code_id) REFERENCES discount_codes(id)
            )
            """)
            self.connection.commit()

    def _row_to_code(self, row) -> Optional[DiscountCode]:
        """Convert a database row to a DiscountCode"""
        if not row:
            return None

        result = {key: row[key] for key in row.keys()}

        for field in ['applicable_spot_types', 'membership_tiers_only']:
            if result.get(field) is not None:
                try:
                    result[field] = json.loads(result[field])
                except (json.JSONDecodeError, TypeError):
                    result[field] = None

        for field in ['valid_from', 'valid_until', 'created_at']:
            result[field] = from_db_time(result.get(field))

        result['is_active'] = bool(result['is_active'])
        return DiscountCode(**result)

    def get_discount_code_by_id(self, code_id: int) -> Optional[DiscountCode]:
        """Get a discount code by its ID"""
        with self.lock:
            self.cursor.execute("SELECT * FROM discount_codes WHERE id = ?", (code_id,))
            return self._row_to_code(self.cursor.fetchone())

    def resolve_discount_code(self, code: str) -> Optional[DiscountCode]:
        """Look a code up case-insensitively. None when it does not exist."""
        if not code or not code.strip():
            return None
        with self.lock:
            self.cursor.execute("SELECT * FROM discount_codes WHERE code = ?", (code.strip().upper(),))
            return self._row_to_code(self.cursor.fetchone())

    def create_discount_code(self, code_data: Union[DiscountCodeCreate, Dict[str, Any]]) -> DiscountCode:
        """Create a new discount code"""
        if isinstance(code_data, dict):
            code_data = DiscountCodeCreate(**code_data)

        code = code_data.code or DiscountCode.generate_code()
        with self.lock:
            try:
                self.cursor.execute(
                    """
                    INSERT INTO discount_codes
                    (code, discount_type, value, min_amount, max_discount, valid_from, valid_until,
                     usage_limit, used_count, applicable_spot_types, membership_tiers_only, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
                    RETURNING *
                    """,
                    (
                        code.upper(),
                        code_data.discount_type.value,
                        code_data.value,
                        code_data.min_amount,
                        code_data.max_discount,
                        to_db_time(code_data.valid_from),
                        to_db_time(code_data.valid_until),
                        code_data.usage_limit,
                        json.dumps([t.value for t in code_data.applicable_spot_types]) if code_data.applicable_spot_types else None,
                        json.dumps([t.value for t in code_data.membership_tiers_only]) if code_data.membership_tiers_only else None,
                        int(code_data.is_active),
                        to_db_time(datetime.now()),
                    )
                )
                result = self._row_to_code(self.cursor.fetchone())
                self.connection.commit()
                return result
            except sqlite3.IntegrityError as e:
                self.connection.rollback()
                if "UNIQUE constraint failed" in str(e):
                    raise ValueError("A discount code with this code already exists")
                raise

    def get_all_discount_codes(self) -> List[DiscountCode]:
        """Get all discount codes"""
        with self.lock:
            self.cursor.execute("SELECT * FROM discount_codes ORDER BY created_at DESC")
            return [self._row_to_code(row) for row in self.cursor.fetchall()]

    def set_active(self, code_id: int, is_active: bool) -> bool:
        with self.lock:
            self.cursor.execute(
                "UPDATE discount_codes SET is_active = ? WHERE id = ?",
                (int(is_active), code_id)
            )
            self.connection.commit()
            return self.cursor.rowcount > 0

    def delete_discount_code(self, code_id: int) -> bool:
        """Delete a discount code"""
        with self.lock:
            try:
                self.cursor.execute("DELETE FROM discount_code_usage WHERE code_id = ?", (code_id,))
                self.cursor.execute("DELETE FROM discount_codes WHERE id = ?", (code_id,))
                self.connection.commit()
                return self.cursor.rowcount > 0
            except sqlite3.Error:
                self.connection.rollback()
                logger.error("Error deleting discount code %s", code_id, exc_info=True)
                raise

    def record_usage(self, code: DiscountCode, user_id: str, reservation_id: Optional[int],
                     amount_before_discount: float, discount_amount: float) -> bool:
        """
        Count one use of a code against its usage limit.

        Returns False without writing when the limit was reached in the meantime.
        """
        with self.lock:
            try:
                self.cursor.execute(
                    """
                    UPDATE discount_codes
                    SET used_count = used_count + 1
                    WHERE id = ? AND (usage_limit IS NULL OR used_count < usage_limit)
                    """,
                    (code.id,)
                )
                if self.cursor.rowcount == 0:
                    self.connection.rollback()
                    return False

                self.cursor.execute(
                    """
                    INSERT INTO discount_code_usage
                    (code_id, user_id, reservation_id, amount_before_discount, discount_amount, used_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (code.id, user_id, reservation_id, amount_before_discount, discount_amount, to_db_time(datetime.now()))
                )
                self.connection.commit()
                code.used_count += 1
                return True
            except sqlite3.Error:
                self.connection.rollback()
                logger.error("Error recording usage of discount code %s", code.code, exc_info=True)
                raise
