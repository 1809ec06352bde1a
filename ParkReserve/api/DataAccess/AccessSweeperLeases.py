from datetime import datetime, timedelta

from ..DBConnection import DBConnection, to_db_time, from_db_time


class AccessSweeperLeases:
    """
    Database-level claim so that only one process runs a given sweep at a time.

    A lease is held by `owner` until `expires_at`; the holder may renew it, any
    other owner may take it over once it has expired.
    """

    def __init__(self, conn: DBConnection):
        self.db = conn


    def claim(self, name: str, owner: str, now: datetime, ttl_seconds: int) -> bool:
        expires_at = to_db_time(now + timedelta(seconds=ttl_seconds))
        with self.db.transaction() as cursor:
            cursor.execute("SELECT owner, expires_at FROM sweeper_leases WHERE name = ?;", [name])
            row = cursor.fetchone()
            if row is None:
                cursor.execute(
                    "INSERT INTO sweeper_leases (name, owner, expires_at) VALUES (?, ?, ?);",
                    [name, owner, expires_at]
                )
                return True

            if row["owner"] != owner and from_db_time(row["expires_at"]) > now:
                return False

            cursor.execute(
                "UPDATE sweeper_leases SET owner = ?, expires_at = ? WHERE name = ?;",
                [owner, expires_at, name]
            )
            return True


    def release(self, name: str, owner: str) -> bool:
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM sweeper_leases WHERE name = ? AND owner = ?;", [name, owner])
            return cursor.rowcount > 0


    def holder(self, name: str):
        with self.db.lock:
            self.db.cursor.execute("SELECT owner FROM sweeper_leases WHERE name = ?;", [name])
            row = self.db.cursor.fetchone()
        return row["owner"] if row else None
