import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional

from ..DBConnection import DBConnection, to_db_time, from_db_time
from ..Models.Spot import Spot, SpotType, normalize_features


def _features_to_db(features) -> str:
    return ",".join(normalize_features(features))


def _features_from_db(raw) -> List[str]:
    if not raw:
        return []
    return [f for f in raw.split(",") if f]


class AccessSpots:

    def __init__(self, conn: DBConnection):
        self.cursor = conn.cursor
        self.conn = conn.connection
        self.lock = conn.lock


    def _row_to_spot(self, row) -> Spot:
        row_dict = dict(row)
        return Spot(
            id=row_dict["id"],
            spot_number=row_dict["spot_number"],
            spot_type=row_dict["spot_type"],
            features=_features_from_db(row_dict["features"]),
            zone=row_dict["zone"],
            floor=row_dict["floor"],
            is_occupied=bool(row_dict["is_occupied"]),
            is_active=bool(row_dict["is_active"]),
            created_at=from_db_time(row_dict["created_at"]),
        )


    def get_spot(self, id: int) -> Optional[Spot]:
        query = """
        SELECT * FROM spots
        WHERE id = ?;
        """
        with self.lock:
            self.cursor.execute(query, [id])
            row = self.cursor.fetchone()
        if row is None:
            return None
        return self._row_to_spot(row)


    def get_all_spots(self) -> List[Spot]:
        with self.lock:
            self.cursor.execute("SELECT * FROM spots ORDER BY id;")
            rows = self.cursor.fetchall()
        return [self._row_to_spot(row) for row in rows]


    def list_spots(self, spot_type: SpotType, features: Iterable[str] = None) -> List[Spot]:
        """Active spots of exactly spot_type that carry every requested feature, lowest id first."""
        query = """
        SELECT * FROM spots
        WHERE spot_type = ? AND is_active = 1
        ORDER BY id;
        """
        with self.lock:
            self.cursor.execute(query, [SpotType.parse(spot_type).value])
            rows = self.cursor.fetchall()

        spots = [self._row_to_spot(row) for row in rows]
        return [spot for spot in spots if spot.has_features(features or [])]


    def current_occupancy_ratio(self, spot_types: Iterable[SpotType] = None, features: Iterable[str] = None) -> float:
        """Occupied share of the active spots in the given pool; 0.0 for an empty pool."""
        query = "SELECT spot_type, features, is_occupied FROM spots WHERE is_active = 1"
        params = []
        types = [SpotType.parse(t).value for t in spot_types] if spot_types else []
        if types:
            query += " AND spot_type IN (%s)" % ",".join("?" for _ in types)
            params.extend(types)

        with self.lock:
            self.cursor.execute(query, params)
            rows = self.cursor.fetchall()

        required = set(normalize_features(features))
        pool = [row for row in rows if required.issubset(_features_from_db(row["features"]))]
        if not pool:
            return 0.0
        occupied = sum(1 for row in pool if row["is_occupied"])
        return occupied / len(pool)


    def add_spot(self, spot: Spot) -> Spot:
        query = """
        INSERT INTO spots
            (spot_number, spot_type, features, zone, floor, is_occupied, is_active, created_at)
        VALUES
            (:spot_number, :spot_type, :features, :zone, :floor, :is_occupied, :is_active, :created_at)
        RETURNING id;
        """
        params = {
            "spot_number": spot.spot_number,
            "spot_type": spot.spot_type.value,
            "features": _features_to_db(spot.features),
            "zone": spot.zone,
            "floor": spot.floor,
            "is_occupied": int(spot.is_occupied),
            "is_active": int(spot.is_active),
            "created_at": to_db_time(spot.created_at or datetime.now()),
        }
        with self.lock:
            try:
                self.cursor.execute(query, params)
                spot.id = self.cursor.fetchone()[0]
                self.conn.commit()
            except sqlite3.IntegrityError:
                self.conn.rollback()
                raise ValueError(f"Spot {spot.spot_number} already exists")
        return spot


    def set_occupied(self, id: int, is_occupied: bool) -> bool:
        with self.lock:
            self.cursor.execute(
                "UPDATE spots SET is_occupied = ? WHERE id = ?;",
                [int(is_occupied), id]
            )
            self.conn.commit()
            return self.cursor.rowcount > 0


    def set_active(self, id: int, is_active: bool) -> bool:
        with self.lock:
            self.cursor.execute(
                "UPDATE spots SET is_active = ? WHERE id = ?;",
                [int(is_active), id]
            )
            self.conn.commit()
            return self.cursor.rowcount > 0


    def count_spots(self, only_active: bool = True) -> int:
        query = "SELECT COUNT(*) FROM spots"
        if only_active:
            query += " WHERE is_active = 1"
        with self.lock:
            self.cursor.execute(query)
            return self.cursor.fetchone()[0]
