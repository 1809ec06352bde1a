from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional


class SpotType(str, Enum):
    COMPACT = "COMPACT"
    REGULAR = "REGULAR"
    LARGE = "LARGE"
    HANDICAP = "HANDICAP"
    MOTORCYCLE = "MOTORCYCLE"

    @classmethod
    def parse(cls, value) -> "SpotType":
        if isinstance(value, SpotType):
            return value
        key = str(value).strip().upper()
        key = SPOT_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown spot type: {value}")


SPOT_TYPE_ALIASES = {
    "STANDARD": "REGULAR",
    "OVERSIZED": "LARGE",
}

# A vehicle fits its own spot type first, then progressively larger ones.
# HANDICAP spots are never handed out as a fallback.
COMPATIBLE_SPOT_TYPES = {
    SpotType.MOTORCYCLE: [SpotType.MOTORCYCLE, SpotType.COMPACT, SpotType.REGULAR, SpotType.LARGE],
    SpotType.COMPACT: [SpotType.COMPACT, SpotType.REGULAR, SpotType.LARGE],
    SpotType.REGULAR: [SpotType.REGULAR, SpotType.LARGE],
    SpotType.LARGE: [SpotType.LARGE],
    SpotType.HANDICAP: [SpotType.HANDICAP],
}


def compatible_spot_types(requested: SpotType) -> List[SpotType]:
    return list(COMPATIBLE_SPOT_TYPES[SpotType.parse(requested)])


def normalize_features(features: Optional[Iterable[str]]) -> List[str]:
    if not features:
        return []
    return sorted({f.strip().lower() for f in features if f and f.strip()})


class Spot:

    def __init__(self,
                 id: int,
                 spot_number: str,
                 spot_type: SpotType,
                 features: List[str],
                 zone: str,
                 floor: int,
                 is_occupied: bool,
                 is_active: bool,
                 created_at: datetime):

        self.id = id
        self.spot_number = spot_number
        self.spot_type = SpotType.parse(spot_type)
        self.features = normalize_features(features)
        self.zone = zone
        self.floor = floor
        self.is_occupied = is_occupied
        self.is_active = is_active
        self.created_at = created_at

    def has_features(self, required: Iterable[str]) -> bool:
        return set(normalize_features(required)).issubset(self.features)

    def fits(self, spot_type: SpotType, features: Iterable[str]) -> bool:
        """True when a request for spot_type/features may be parked here."""
        if not self.is_active:
            return False
        if self.spot_type not in compatible_spot_types(spot_type):
            return False
        return self.has_features(features)

    def to_dict(self):
        return {
            "id": self.id,
            "spot_number": self.spot_number,
            "spot_type": self.spot_type.value,
            "features": list(self.features),
            "zone": self.zone,
            "floor": self.floor,
            "is_occupied": self.is_occupied,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Spot {self.spot_number} {self.spot_type.value}>"
