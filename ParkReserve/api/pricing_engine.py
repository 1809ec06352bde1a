import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional

from .errors import UpstreamError
from .Models.DiscountCode import DiscountValidation
from .Models.Pricing import (
    MembershipBenefits,
    MembershipTier,
    PricingBreakdown,
    PricingContext,
    PricingOption,
    PricingQuote,
    SurgeInfo,
    SurgeZone
)
from .Models.Spot import SpotType

logger = logging.getLogger(__name__)

MIN_SURGE = 1.0
MAX_SURGE = 3.0

PEAK_MULTIPLIER = 1.5
PEAK_WINDOWS = ((7, 9), (17, 19))
WEEKEND_MULTIPLIER = 1.2
EVENT_MULTIPLIER = 1.4
EVENT_WINDOW = (20, 23)
EV_CHARGING_MULTIPLIER = 1.2

QUOTE_VALIDITY = timedelta(minutes=15)
OPTION_DURATIONS = (60, 120, 240, 480, 1440)

MEMBERSHIP_BENEFITS = {
    MembershipTier.BASIC: MembershipBenefits(
        tier=MembershipTier.BASIC,
        discount_percent=0,
        priority_booking=False,
        extended_grace_period=5,
        free_hours=0,
    ),
    MembershipTier.PREMIUM: MembershipBenefits(
        tier=MembershipTier.PREMIUM,
        discount_percent=10,
        priority_booking=True,
        extended_grace_period=15,
        free_hours=2,
        special_rates={SpotType.COMPACT: 3.5, SpotType.REGULAR: 4.0, SpotType.LARGE: 5.5},
        features=["priority_support", "monthly_reports"],
    ),
    MembershipTier.VIP: MembershipBenefits(
        tier=MembershipTier.VIP,
        discount_percent=20,
        priority_booking=True,
        extended_grace_period=30,
        free_hours=5,
        special_rates={SpotType.COMPACT: 3.0, SpotType.REGULAR: 3.5, SpotType.LARGE: 5.0},
        features=["priority_support", "monthly_reports", "valet_service", "reserved_spots"],
    ),
    MembershipTier.CORPORATE: MembershipBenefits(
        tier=MembershipTier.CORPORATE,
        discount_percent=25,
        priority_booking=True,
        extended_grace_period=30,
        free_hours=10,
        special_rates={SpotType.COMPACT: 2.5, SpotType.REGULAR: 3.0, SpotType.LARGE: 4.5},
        features=["priority_support", "monthly_reports", "bulk_billing", "dedicated_account_manager"],
    ),
}

DEFAULT_SURGE_ZONES = [
    SurgeZone(
        id="premium",
        name="Premium Level",
        spot_types=[SpotType.REGULAR, SpotType.LARGE],
        occupancy_threshold=0.70,
        max_multiplier=2.0,
    ),
    SurgeZone(
        id="ev_zone",
        name="EV Charging Zone",
        features=["ev_charging"],
        occupancy_threshold=0.60,
        max_multiplier=2.5,
    ),
]


def clamp(value: float, low: float = MIN_SURGE, high: float = MAX_SURGE) -> float:
    return max(low, min(high, value))


def _in_window(hour: int, window) -> bool:
    return window[0] <= hour < window[1]


def time_of_day_factor(moment: datetime) -> float:
    if any(_in_window(moment.hour, window) for window in PEAK_WINDOWS):
        return PEAK_MULTIPLIER
    return 1.0


def day_of_week_factor(moment: datetime) -> float:
    # zaterdag = 5, zondag = 6
    if moment.weekday() < 5:
        return 1.0
    factor = WEEKEND_MULTIPLIER
    if _in_window(moment.hour, EVENT_WINDOW):
        factor *= EVENT_MULTIPLIER
    return factor


def feature_factor(features) -> float:
    if "ev_charging" in (features or []):
        return EV_CHARGING_MULTIPLIER
    return 1.0


def occupancy_factor(ratio: float) -> float:
    """
    Demand curve: flat below 50% occupancy, a gentle rise to 1.3 at 80%,
    then steep up to the 3.0 ceiling when the pool is full.
    """
    ratio = max(0.0, min(1.0, ratio))
    if ratio < 0.5:
        return 1.0
    if ratio < 0.8:
        return 1.0 + (ratio - 0.5) / 0.3 * 0.3
    return 1.3 + (ratio - 0.8) / 0.2 * 1.7


def surge_multiplier(start_time: datetime, features, occupancy: float) -> float:
    factors = [
        time_of_day_factor(start_time),
        day_of_week_factor(start_time),
        feature_factor(features),
        occupancy_factor(occupancy),
    ]
    multiplier = 1.0
    for factor in factors:
        multiplier *= clamp(factor)
    return clamp(multiplier)


class PricingEngine:

    def __init__(self, spots, rates, memberships, discount_codes, clock, zones: Optional[List[SurgeZone]] = None):
        self.spots = spots
        self.rates = rates
        self.memberships = memberships
        self.discount_codes = discount_codes
        self.clock = clock
        self.zones = zones if zones is not None else list(DEFAULT_SURGE_ZONES)


    def quote(self, ctx: PricingContext, occupancy: Optional[float] = None) -> PricingQuote:
        """
        Price a stay for the given context.

        With a fixed occupancy the result only depends on the context and the
        stored rates, memberships and discount codes.
        """
        try:
            if occupancy is None:
                occupancy = self.spots.current_occupancy_ratio([ctx.spot_type])
            base_rate = self.rates.base_rate(ctx.spot_type)
            tier = self._membership_tier(ctx)
            code = self.discount_codes.resolve_discount_code(ctx.discount_code) if ctx.discount_code else None
        except sqlite3.Error:
            logger.error(
                "Pricing lookup failed for %s starting %s (user %s)",
                ctx.spot_type.value, ctx.start_time, ctx.user_id, exc_info=True
            )
            raise UpstreamError("Failed to calculate pricing", "PRICING_FAILED")

        now = self.clock.now()
        multiplier = surge_multiplier(ctx.start_time, ctx.features, occupancy)
        surge_rate = round(base_rate * multiplier, 2)

        membership_percent = MEMBERSHIP_BENEFITS[tier].discount_percent
        membership_discount = round(surge_rate * membership_percent / 100, 2)

        code_discount = 0.0
        if code is not None:
            code_discount = round(code.discount_for(surge_rate, now, ctx.spot_type, tier), 2)

        final_rate = round(max(0.0, surge_rate - membership_discount - code_discount), 2)
        hours = ctx.expected_duration / 60
        subtotal = round(surge_rate * hours, 2)
        total = round(final_rate * hours, 2)

        breakdown = PricingBreakdown(
            base_hourly_rate=base_rate,
            surge_multiplier=round(multiplier, 3),
            membership_discount_percent=membership_percent,
            discount_code_percent=round(code_discount / surge_rate * 100, 2) if surge_rate else 0.0,
            final_hourly_rate=final_rate,
            estimated_duration=ctx.expected_duration,
            subtotal=subtotal,
            discounts=round(max(0.0, subtotal - total), 2),
            total=total,
        )

        return PricingQuote(
            base_rate=base_rate,
            surge_multiplier=round(multiplier, 3),
            surge_rate=surge_rate,
            membership_discount=membership_discount,
            discount_code_discount=code_discount,
            final_rate=final_rate,
            total_estimate=max(0.0, total),
            valid_until=now + QUOTE_VALIDITY,
            breakdown=breakdown,
        )


    def _membership_tier(self, ctx: PricingContext) -> MembershipTier:
        if ctx.membership_tier is not None:
            return ctx.membership_tier
        if ctx.user_id:
            return self.memberships.get_tier(ctx.user_id) or MembershipTier.BASIC
        return MembershipTier.BASIC


    def membership_benefits(self, tier: MembershipTier) -> MembershipBenefits:
        return MEMBERSHIP_BENEFITS[MembershipTier(tier)]


    def pricing_options(self, ctx: PricingContext) -> List[PricingOption]:
        try:
            occupancy = self.spots.current_occupancy_ratio([ctx.spot_type])
        except sqlite3.Error:
            logger.error("Occupancy lookup failed for %s", ctx.spot_type.value, exc_info=True)
            raise UpstreamError("Failed to calculate pricing", "PRICING_FAILED")

        options = []
        for duration in OPTION_DURATIONS:
            option_ctx = ctx.model_copy(update={"expected_duration": duration})
            options.append(PricingOption(duration=duration, quote=self.quote(option_ctx, occupancy)))
        return options


    def validate_discount_code(self, code: str) -> DiscountValidation:
        try:
            discount = self.discount_codes.resolve_discount_code(code)
        except sqlite3.Error:
            logger.error("Discount code lookup failed", exc_info=True)
            raise UpstreamError("Failed to calculate pricing", "PRICING_FAILED")

        if discount is None:
            return DiscountValidation(valid=False, reason="Discount code not found")

        valid, reason = discount.check_validity(self.clock.now())
        if not valid:
            return DiscountValidation(valid=False, reason=reason)
        return DiscountValidation(valid=True, discount=discount.to_dict())


    def current_surge_info(self) -> List[SurgeInfo]:
        now = self.clock.now()
        time_factor = clamp(time_of_day_factor(now)) * clamp(day_of_week_factor(now))

        info = []
        for zone in self.zones:
            if not zone.is_active:
                continue
            try:
                occupancy = self.spots.current_occupancy_ratio(zone.spot_types or None, zone.features or None)
            except sqlite3.Error:
                logger.error("Occupancy lookup failed for zone %s", zone.id, exc_info=True)
                raise UpstreamError("Failed to calculate pricing", "PRICING_FAILED")

            multiplier = time_factor
            if occupancy > zone.occupancy_threshold:
                multiplier *= occupancy_factor(occupancy)
                reason = f"High demand ({round(occupancy * 100)}% occupancy)"
            elif time_factor > 1.0:
                reason = "Peak hours"
            else:
                reason = "Normal pricing"

            multiplier = clamp(multiplier, MIN_SURGE, min(MAX_SURGE, zone.max_multiplier))
            info.append(SurgeInfo(zone=zone.name, multiplier=round(multiplier, 3), reason=reason))
        return info
