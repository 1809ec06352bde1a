from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .Pricing import PricingQuote


class AllocationStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    UNAVAILABLE = "UNAVAILABLE"


class AllocationResult(BaseModel):
    status: AllocationStatus
    message: str
    reservation_id: Optional[int] = None
    spot_id: Optional[int] = None
    waitlist_position: Optional[int] = None
    quote: Optional[PricingQuote] = None

    @property
    def success(self) -> bool:
        return self.status != AllocationStatus.UNAVAILABLE


class CancellationResult(BaseModel):
    success: bool
    message: str
    refund_amount: float = 0.0
