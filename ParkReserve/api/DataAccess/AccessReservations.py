from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..DBConnection import DBConnection, to_db_time, from_db_time
from ..Models.Reservation import Reservation, ReservationStatus, BLOCKING_STATUSES
from .AccessSpots import _features_to_db, _features_from_db


def _status_list(statuses: Iterable[ReservationStatus]) -> List[str]:
    return [ReservationStatus(s).value for s in statuses]


def _placeholders(values) -> str:
    return ",".join("?" for _ in values)


class AccessReservations:

    def __init__(self, conn: DBConnection, cipher=None):
        self.db = conn
        self.cursor = conn.cursor
        self.conn = conn.connection
        self.lock = conn.lock
        self.cipher = cipher


    def _row_to_reservation(self, row) -> Reservation:
        reservation_dict = dict(row)
        for field in ("start_time", "end_time", "created_at", "updated_at", "checked_in_at"):
            reservation_dict[field] = from_db_time(reservation_dict[field])
        reservation_dict["features"] = _features_from_db(reservation_dict["features"])
        if self.cipher is not None:
            reservation_dict["license_plate"] = self.cipher.decrypt(reservation_dict["license_plate"])
        return Reservation(**reservation_dict)


    def _to_params(self, reservation: Reservation) -> Dict:
        plate = reservation.license_plate
        if self.cipher is not None:
            plate = self.cipher.encrypt(plate)
        return {
            "user_id": reservation.user_id,
            "spot_id": reservation.spot_id,
            "spot_type": reservation.spot_type.value,
            "features": _features_to_db(reservation.features),
            "start_time": to_db_time(reservation.start_time),
            "end_time": to_db_time(reservation.end_time),
            "status": reservation.status.value,
            "license_plate": plate,
            "make": reservation.make,
            "model": reservation.model,
            "color": reservation.color,
            "notes": reservation.notes,
            "quoted_rate": reservation.quoted_rate,
            "quoted_total": reservation.quoted_total,
            "membership_tier": reservation.membership_tier,
            "discount_code": reservation.discount_code,
            "cancellation_reason": reservation.cancellation_reason,
            "waitlist_position": reservation.waitlist_position,
            "checked_in_at": to_db_time(reservation.checked_in_at),
            "created_at": to_db_time(reservation.created_at),
            "updated_at": to_db_time(reservation.updated_at),
        }


    def _insert(self, cursor, reservation: Reservation):
        query = """
        INSERT INTO reservations
            (user_id, spot_id, spot_type, features, start_time, end_time, status, license_plate,
             make, model, color, notes, quoted_rate, quoted_total, membership_tier, discount_code,
             cancellation_reason, waitlist_position, checked_in_at, created_at, updated_at)
        VALUES
            (:user_id, :spot_id, :spot_type, :features, :start_time, :end_time, :status, :license_plate,
             :make, :model, :color, :notes, :quoted_rate, :quoted_total, :membership_tier, :discount_code,
             :cancellation_reason, :waitlist_position, :checked_in_at, :created_at, :updated_at)
        RETURNING id;
        """
        cursor.execute(query, self._to_params(reservation))
        reservation.id = cursor.fetchone()[0]


    def _conflicting_rows(self, cursor, spot_id: int, start: datetime, end: datetime,
                          exclude_reservation_id: Optional[int] = None):
        # Half-open intervals: [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1
        statuses = _status_list(BLOCKING_STATUSES)
        query = f"""
        SELECT * FROM reservations
        WHERE spot_id = ?
          AND status IN ({_placeholders(statuses)})
          AND start_time < ?
          AND ? < end_time
        """
        params = [spot_id, *statuses, to_db_time(end), to_db_time(start)]
        if exclude_reservation_id is not None:
            query += " AND id != ?"
            params.append(exclude_reservation_id)
        cursor.execute(query + " ORDER BY start_time;", params)
        return cursor.fetchall()


    def get_reservation(self, id: int) -> Optional[Reservation]:
        query = """
        SELECT * FROM reservations
        WHERE id = ?;
        """
        with self.lock:
            self.cursor.execute(query, [id])
            reservation = self.cursor.fetchone()

        if reservation is None:
            return None
        return self._row_to_reservation(reservation)


    def get_reservations_by_userid(self, user_id: str, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        query = "SELECT * FROM reservations WHERE user_id = ?"
        params = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(ReservationStatus(status).value)
        with self.lock:
            self.cursor.execute(query + " ORDER BY start_time DESC, id DESC;", params)
            rows = self.cursor.fetchall()
        return [self._row_to_reservation(row) for row in rows]


    def find_conflicts(self, spot_id: int, start: datetime, end: datetime,
                       exclude_reservation_id: Optional[int] = None) -> List[Reservation]:
        with self.lock:
            rows = self._conflicting_rows(self.cursor, spot_id, start, end, exclude_reservation_id)
        return [self._row_to_reservation(row) for row in rows]


    def has_conflict(self, spot_id: int, start: datetime, end: datetime,
                     exclude_reservation_id: Optional[int] = None) -> bool:
        return len(self.find_conflicts(spot_id, start, end, exclude_reservation_id)) > 0


    def create_if_no_conflict(self, reservation: Reservation) -> bool:
        """
        Insert a CONFIRMED/ACTIVE reservation only if its spot is still free.

        The conflict check and the insert share one write transaction.
        Returns False (nothing written) when another reservation got there first.
        """
        with self.db.transaction() as cursor:
            if self._conflicting_rows(cursor, reservation.spot_id, reservation.start_time, reservation.end_time):
                return False
            self._insert(cursor, reservation)
        return True


    def add_waitlisted(self, reservation: Reservation) -> int:
        """Insert a WAITLISTED reservation and return its 1-indexed position in its group."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) FROM reservations
                WHERE status = ?
                  AND spot_type = ?
                  AND features = ?
                  AND start_time < ?
                  AND ? < end_time
                """,
                [
                    ReservationStatus.WAITLISTED.value,
                    reservation.spot_type.value,
                    _features_to_db(reservation.features),
                    to_db_time(reservation.end_time),
                    to_db_time(reservation.start_time),
                ]
            )
            reservation.waitlist_position = cursor.fetchone()[0] + 1
            self._insert(cursor, reservation)
        return reservation.waitlist_position


    def waitlist_position(self, reservation: Reservation) -> Optional[int]:
        """Live rank of a WAITLISTED reservation among earlier entries of its group."""
        if reservation.status != ReservationStatus.WAITLISTED:
            return None
        created = to_db_time(reservation.created_at)
        with self.lock:
            self.cursor.execute(
                """
                SELECT COUNT(*) FROM reservations
                WHERE status = ?
                  AND spot_type = ?
                  AND features = ?
                  AND start_time < ?
                  AND ? < end_time
                  AND (created_at < ? OR (created_at = ? AND id < ?))
                """,
                [
                    ReservationStatus.WAITLISTED.value,
                    reservation.spot_type.value,
                    _features_to_db(reservation.features),
                    to_db_time(reservation.end_time),
                    to_db_time(reservation.start_time),
                    created,
                    created,
                    reservation.id,
                ]
            )
            return self.cursor.fetchone()[0] + 1


    def confirm_if_no_conflict(self, reservation: Reservation, spot_id: int, now: datetime) -> bool:
        """
        Move a WAITLISTED reservation onto spot_id as CONFIRMED.

        Fails (returns False) when the reservation is no longer WAITLISTED or the
        spot is taken for its window. The reservation object is updated on success.
        """
        with self.db.transaction() as cursor:
            if self._conflicting_rows(cursor, spot_id, reservation.start_time, reservation.end_time, reservation.id):
                return False
            cursor.execute(
                """
                UPDATE reservations
                SET status = ?,
                    spot_id = ?,
                    spot_type = ?,
                    features = ?,
                    quoted_rate = ?,
                    quoted_total = ?,
                    waitlist_position = NULL,
                    updated_at = ?
                WHERE id = ? AND status = ?;
                """,
                [
                    ReservationStatus.CONFIRMED.value,
                    spot_id,
                    reservation.spot_type.value,
                    _features_to_db(reservation.features),
                    reservation.quoted_rate,
                    reservation.quoted_total,
                    to_db_time(now),
                    reservation.id,
                    ReservationStatus.WAITLISTED.value,
                ]
            )
            if cursor.rowcount == 0:
                return False

        reservation.status = ReservationStatus.CONFIRMED
        reservation.spot_id = spot_id
        reservation.waitlist_position = None
        reservation.updated_at = now
        return True


    def transition_status(self,
                          id: int,
                          from_statuses: Iterable[ReservationStatus],
                          to_status: ReservationStatus,
                          now: datetime,
                          cancellation_reason: Optional[str] = None,
                          checked_in_at: Optional[datetime] = None) -> bool:
        """Conditional status update. False when the row was not in one of from_statuses."""
        statuses = _status_list(from_statuses)
        query = f"""
        UPDATE reservations
        SET status = ?,
            updated_at = ?,
            cancellation_reason = COALESCE(?, cancellation_reason),
            checked_in_at = COALESCE(?, checked_in_at),
            waitlist_position = NULL
        WHERE id = ? AND status IN ({_placeholders(statuses)});
        """
        target = ReservationStatus(to_status).value
        params = [target, to_db_time(now), cancellation_reason, to_db_time(checked_in_at), id, *statuses]
        with self.db.transaction() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount > 0


    def _select(self, where: str, params: list, order: str = "created_at, id") -> List[Reservation]:
        with self.lock:
            self.cursor.execute(f"SELECT * FROM reservations WHERE {where} ORDER BY {order};", params)
            rows = self.cursor.fetchall()
        return [self._row_to_reservation(row) for row in rows]


    def find_no_show_candidates(self, started_before: datetime) -> List[Reservation]:
        statuses = _status_list(BLOCKING_STATUSES)
        return self._select(
            f"status IN ({_placeholders(statuses)}) AND checked_in_at IS NULL AND start_time < ?",
            [*statuses, to_db_time(started_before)],
        )


    def find_ended(self, now: datetime) -> List[Reservation]:
        statuses = _status_list(BLOCKING_STATUSES)
        return self._select(
            f"status IN ({_placeholders(statuses)}) AND end_time < ?",
            [*statuses, to_db_time(now)],
        )


    def find_waitlisted(self, starting_after: Optional[datetime] = None,
                        starting_before: Optional[datetime] = None) -> List[Reservation]:
        """WAITLISTED reservations in FIFO order."""
        where = "status = ?"
        params = [ReservationStatus.WAITLISTED.value]
        if starting_after is not None:
            where += " AND start_time > ?"
            params.append(to_db_time(starting_after))
        if starting_before is not None:
            where += " AND start_time <= ?"
            params.append(to_db_time(starting_before))
        return self._select(where, params)


    def find_waitlisted_overlapping(self, start: datetime, end: datetime) -> List[Reservation]:
        return self._select(
            "status = ? AND start_time < ? AND ? < end_time",
            [ReservationStatus.WAITLISTED.value, to_db_time(end), to_db_time(start)],
        )


    def count_by_status(self, since: Optional[datetime] = None) -> Dict[ReservationStatus, int]:
        query = "SELECT status, COUNT(*) AS n FROM reservations"
        params = []
        if since is not None:
            query += " WHERE created_at >= ?"
            params.append(to_db_time(since))
        with self.lock:
            self.cursor.execute(query + " GROUP BY status;", params)
            rows = self.cursor.fetchall()
        counts = {status: 0 for status in ReservationStatus}
        for row in rows:
            counts[ReservationStatus(row["status"])] = row["n"]
        return counts


    def completed_summary(self, since: Optional[datetime] = None) -> Dict[str, float]:
        """Revenue and average duration (minutes) of COMPLETED reservations."""
        where = "status = ?"
        params = [ReservationStatus.COMPLETED.value]
        if since is not None:
            where += " AND created_at >= ?"
            params.append(to_db_time(since))
        completed = self._select(where, params)
        if not completed:
            return {"revenue": 0.0, "average_duration": 0.0}
        revenue = sum(float(r.quoted_total) for r in completed)
        average = sum(r.duration_minutes for r in completed) / len(completed)
        return {"revenue": round(revenue, 2), "average_duration": round(average, 1)}
