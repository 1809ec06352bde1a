from .Spot import Spot, SpotType, compatible_spot_types, normalize_features
from .Reservation import (
    Reservation,
    ReservationStatus,
    TRANSITIONS,
    BLOCKING_STATUSES,
    TERMINAL_STATUSES,
    check_transition,
    sources_for
)
from .ReservationRequest import ReservationRequest, VehicleInfo
from .Pricing import (
    MembershipBenefits,
    MembershipTier,
    PricingBreakdown,
    PricingContext,
    PricingOption,
    PricingQuote,
    RateType,
    SurgeInfo,
    SurgeZone
)
from .DiscountCode import (
    DiscountCode,
    DiscountCodeCreate,
    DiscountType,
    DiscountValidation
)
from .AllocationResult import AllocationResult, AllocationStatus, CancellationResult
