from typing import Optional

from ..DBConnection import DBConnection
from ..Models.Pricing import MembershipTier


class AccessMemberships:

    def __init__(self, conn: DBConnection):
        self.cursor = conn.cursor
        self.conn = conn.connection
        self.lock = conn.lock


    def get_tier(self, user_id: str) -> Optional[MembershipTier]:
        with self.lock:
            self.cursor.execute("SELECT tier FROM memberships WHERE user_id = ?;", [user_id])
            row = self.cursor.fetchone()
        if row is None:
            return None
        return MembershipTier(row["tier"])


    def set_tier(self, user_id: str, tier: MembershipTier):
        with self.lock:
            self.cursor.execute(
                """
                INSERT INTO memberships (user_id, tier) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET tier = excluded.tier;
                """,
                [user_id, MembershipTier(tier).value]
            )
            self.conn.commit()
