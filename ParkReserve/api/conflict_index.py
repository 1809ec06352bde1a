from datetime import datetime
from typing import List, Optional


class ConflictIndex:
    """Answers overlap questions for a spot against its CONFIRMED/ACTIVE reservations."""

    def __init__(self, reservations):
        self.reservations = reservations

    @staticmethod
    def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
        # Halfopen intervallen: aansluitende tijden botsen niet
        return a_start < b_end and b_start < a_end

    @staticmethod
    def overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> int:
        overlap = min(a_end, b_end) - max(a_start, b_start)
        return max(0, int(overlap.total_seconds() // 60))

    def has_conflict(self, spot_id: int, start: datetime, end: datetime,
                     exclude_reservation_id: Optional[int] = None) -> bool:
        return self.reservations.has_conflict(spot_id, start, end, exclude_reservation_id)

    def conflicts(self, spot_id: int, start: datetime, end: datetime,
                  exclude_reservation_id: Optional[int] = None) -> List[dict]:
        found = self.reservations.find_conflicts(spot_id, start, end, exclude_reservation_id)
        return [
            {
                "reservation_id": r.id,
                "status": r.status.value,
                "start_time": r.start_time.isoformat(),
                "end_time": r.end_time.isoformat(),
                "overlap_minutes": self.overlap_minutes(start, end, r.start_time, r.end_time),
            }
            for r in found
        ]
