from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..clock import to_local_naive
from .Spot import SpotType, normalize_features


class RateType(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"


class MembershipTier(str, Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    VIP = "VIP"
    CORPORATE = "CORPORATE"


class MembershipBenefits(BaseModel):
    tier: MembershipTier
    discount_percent: float
    priority_booking: bool
    extended_grace_period: int = Field(..., description="Minutes")
    free_hours: int = Field(..., description="Included free hours per month")
    special_rates: Dict[SpotType, float] = {}
    features: List[str] = []


class PricingContext(BaseModel):
    spot_type: SpotType
    features: List[str] = []
    rate_type: RateType = RateType.HOURLY
    start_time: datetime
    expected_duration: int = Field(120, gt=0, description="Minutes")
    user_id: Optional[str] = None
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

    @field_validator("start_time")
    @classmethod
    def local_start(cls, v):
        return to_local_naive(v)


class PricingBreakdown(BaseModel):
    base_hourly_rate: float
    surge_multiplier: float
    membership_discount_percent: float
    discount_code_percent: float
    final_hourly_rate: float
    estimated_duration: int
    subtotal: float
    discounts: float
    total: float


class PricingQuote(BaseModel):
    base_rate: float
    surge_multiplier: float
    surge_rate: float
    membership_discount: float
    discount_code_discount: float
    final_rate: float
    total_estimate: float
    valid_until: datetime
    breakdown: PricingBreakdown


class PricingOption(BaseModel):
    duration: int
    quote: PricingQuote


class SurgeInfo(BaseModel):
    zone: str
    multiplier: float
    reason: str


class SurgeZone(BaseModel):
    id: str
    name: str
    spot_types: List[SpotType] = []
    features: List[str] = []
    occupancy_threshold: float
    max_multiplier: float
    is_active: bool = True
