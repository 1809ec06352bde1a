from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..errors import InvalidTransitionError
from .Spot import SpotType, normalize_features


class ReservationStatus(str, Enum):
    WAITLISTED = "WAITLISTED"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    EXPIRED = "EXPIRED"
    DISMISSED = "DISMISSED"


TRANSITIONS = {
    ReservationStatus.WAITLISTED: {
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
        ReservationStatus.DISMISSED,
    },
    ReservationStatus.CONFIRMED: {
        ReservationStatus.ACTIVE,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.EXPIRED,
    },
    ReservationStatus.ACTIVE: {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.EXPIRED,
    },
    ReservationStatus.COMPLETED: set(),
    ReservationStatus.CANCELLED: set(),
    ReservationStatus.NO_SHOW: set(),
    ReservationStatus.EXPIRED: set(),
    ReservationStatus.DISMISSED: set(),
}

# Statuses that hold a spot for their window
BLOCKING_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE)

TERMINAL_STATUSES = tuple(s for s, targets in TRANSITIONS.items() if not targets)


def sources_for(target: ReservationStatus) -> List[ReservationStatus]:
    """All statuses from which target can be reached in one step."""
    return [s for s, targets in TRANSITIONS.items() if target in targets]


def check_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    current = ReservationStatus(current)
    target = ReservationStatus(target)
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Reservation cannot move from {current.value} to {target.value}"
        )


class Reservation:

    def __init__(self,
                 id: Optional[int],
                 user_id: str,
                 spot_id: Optional[int],
                 spot_type: SpotType,
                 features: List[str],
                 start_time: datetime,
                 end_time: datetime,
                 status: ReservationStatus,
                 license_plate: str,
                 created_at: datetime,
                 make: Optional[str] = None,
                 model: Optional[str] = None,
                 color: Optional[str] = None,
                 notes: Optional[str] = None,
                 quoted_rate: float = 0.0,
                 quoted_total: float = 0.0,
                 membership_tier: Optional[str] = None,
                 discount_code: Optional[str] = None,
                 cancellation_reason: Optional[str] = None,
                 waitlist_position: Optional[int] = None,
                 checked_in_at: Optional[datetime] = None,
                 updated_at: Optional[datetime] = None):

        self.id = id
        self.user_id = user_id
        self.spot_id = spot_id
        self.spot_type = SpotType.parse(spot_type)
        self.features = normalize_features(features)
        self.start_time = start_time
        self.end_time = end_time
        self.status = ReservationStatus(status)
        self.license_plate = license_plate
        self.make = make
        self.model = model
        self.color = color
        self.notes = notes
        self.quoted_rate = quoted_rate
        self.quoted_total = quoted_total
        self.membership_tier = membership_tier
        self.discount_code = discount_code
        self.cancellation_reason = cancellation_reason
        self.waitlist_position = waitlist_position
        self.checked_in_at = checked_in_at
        self.created_at = created_at
        self.updated_at = updated_at or created_at

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)

    @property
    def holds_spot(self) -> bool:
        return self.status in BLOCKING_STATUSES

    def transition_to(self, target: ReservationStatus) -> None:
        check_transition(self.status, target)
        self.status = ReservationStatus(target)

    def to_dict(self, mask=None):
        plate = mask(self.license_plate) if mask else self.license_plate
        return {
            "id": self.id,
            "user_id": self.user_id,
            "spot_id": self.spot_id,
            "spot_type": self.spot_type.value,
            "features": list(self.features),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "license_plate": plate,
            "make": self.make,
            "model": self.model,
            "color": self.color,
            "notes": self.notes,
            "quoted_rate": self.quoted_rate,
            "quoted_total": self.quoted_total,
            "membership_tier": self.membership_tier,
            "discount_code": self.discount_code,
            "cancellation_reason": self.cancellation_reason,
            "waitlist_position": self.waitlist_position if self.status == ReservationStatus.WAITLISTED else None,
            "checked_in_at": self.checked_in_at.isoformat() if self.checked_in_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Reservation {self.id} {self.status.value}>"
