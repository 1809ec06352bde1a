from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ..clock import to_local_naive
from .Pricing import MembershipTier
from .Spot import SpotType, normalize_features


class VehicleInfo(BaseModel):
    license_plate: str = ""
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None


class ReservationRequest(BaseModel):
    user_id: str
    spot_id: Optional[int] = None
    spot_type: SpotType
    features: List[str] = []
    start_time: datetime
    end_time: datetime
    vehicle: VehicleInfo
    notes: Optional[str] = None
    allow_waitlist: bool = False
    membership_tier: Optional[MembershipTier] = None
    discount_code: Optional[str] = None

    @field_validator("spot_type", mode="before")
    @classmethod
    def parse_spot_type(cls, v):
        return SpotType.parse(v)

    @field_validator("features", mode="before")
    @classmethod
    def clean_features(cls, v):
        return normalize_features(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def local_times(cls, v):
        return to_local_naive(v)

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60
