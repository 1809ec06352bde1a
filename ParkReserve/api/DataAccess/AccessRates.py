from typing import Dict

from ..DBConnection import DBConnection
from ..Models.Spot import SpotType

DEFAULT_RATES = {
    SpotType.COMPACT: 4.00,
    SpotType.REGULAR: 5.00,
    SpotType.LARGE: 7.50,
    SpotType.HANDICAP: 5.00,
    SpotType.MOTORCYCLE: 2.50,
}


class AccessRates:
    """Hourly base rate per spot type. Rows in spot_type_rates override the defaults."""

    def __init__(self, conn: DBConnection):
        self.cursor = conn.cursor
        self.conn = conn.connection
        self.lock = conn.lock


    def base_rate(self, spot_type: SpotType) -> float:
        spot_type = SpotType.parse(spot_type)
        with self.lock:
            self.cursor.execute(
                "SELECT hourly_rate FROM spot_type_rates WHERE spot_type = ?;",
                [spot_type.value]
            )
            row = self.cursor.fetchone()
        if row is not None:
            return float(row["hourly_rate"])
        return DEFAULT_RATES[spot_type]


    def set_rate(self, spot_type: SpotType, hourly_rate: float):
        if hourly_rate < 0:
            raise ValueError("Hourly rate cannot be negative")
        with self.lock:
            self.cursor.execute(
                """
                INSERT INTO spot_type_rates (spot_type, hourly_rate) VALUES (?, ?)
                ON CONFLICT(spot_type) DO UPDATE SET hourly_rate = excluded.hourly_rate;
                """,
                [SpotType.parse(spot_type).value, hourly_rate]
            )
            self.conn.commit()


    def get_rate_table(self) -> Dict[SpotType, float]:
        return {spot_type: self.base_rate(spot_type) for spot_type in SpotType}
