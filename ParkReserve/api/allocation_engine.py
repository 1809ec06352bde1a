import logging
import sqlite3
import threading
from datetime import datetime
from typing import Iterable, List, Optional

from . import events
from .crypto_utils import mask_value
from .errors import UpstreamError, ValidationError
from .Models.AllocationResult import AllocationResult, AllocationStatus
from .Models.Pricing import PricingContext, PricingQuote
from .Models.Reservation import Reservation, ReservationStatus
from .Models.ReservationRequest import ReservationRequest
from .Models.Spot import Spot, SpotType, compatible_spot_types

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 30
MAX_DURATION_MINUTES = 24 * 60


def validate_request(request: ReservationRequest, now: datetime) -> None:
    """Raise ValidationError for the first rule the request breaks."""
    if request.start_time <= now:
        raise ValidationError("Start time must be in the future", "START_IN_PAST")
    if request.end_time <= request.start_time:
        raise ValidationError("End time must be after start time", "INVALID_TIME_WINDOW")

    duration = request.duration_minutes
    if duration < MIN_DURATION_MINUTES:
        raise ValidationError(
            f"Reservation must be at least {MIN_DURATION_MINUTES} minutes", "DURATION_TOO_SHORT"
        )
    if duration > MAX_DURATION_MINUTES:
        raise ValidationError("Reservation cannot be longer than 24 hours", "DURATION_TOO_LONG")

    if not request.vehicle.license_plate or not request.vehicle.license_plate.strip():
        raise ValidationError("License plate is required", "LICENSE_PLATE_REQUIRED")


class AllocationEngine:

    def __init__(self, spots, reservations, conflict_index, pricing, discount_codes, publisher, clock):
        self.spots = spots
        self.reservations = reservations
        self.conflict_index = conflict_index
        self.pricing = pricing
        self.discount_codes = discount_codes
        self.publisher = publisher
        self.clock = clock

        self._spot_locks = {}
        self._spot_locks_guard = threading.Lock()


    def spot_lock(self, spot_id: int) -> threading.Lock:
        with self._spot_locks_guard:
            lock = self._spot_locks.get(spot_id)
            if lock is None:
                lock = threading.Lock()
                self._spot_locks[spot_id] = lock
            return lock


    def candidate_spots(self, spot_type: SpotType, features: Iterable[str], spot_id: Optional[int] = None) -> List[Spot]:
        """
        Spots that may take the request, in the order they should be tried:
        the requested spot (when it fits), then the requested type and its
        larger fallbacks, lowest id first within each type.
        """
        features = list(features or [])
        candidates = []
        seen = set()

        if spot_id is not None:
            spot = self.spots.get_spot(spot_id)
            if spot is not None and spot.fits(spot_type, features):
                candidates.append(spot)
                seen.add(spot.id)

        for candidate_type in compatible_spot_types(spot_type):
            for spot in self.spots.list_spots(candidate_type, features):
                if spot.id not in seen:
                    candidates.append(spot)
                    seen.add(spot.id)
        return candidates


    def find_available_spot(self, spot_type: SpotType, features: Iterable[str], start: datetime, end: datetime,
                            spot_id: Optional[int] = None,
                            exclude_reservation_id: Optional[int] = None) -> Optional[Spot]:
        for spot in self.candidate_spots(spot_type, features, spot_id):
            if not self.conflict_index.has_conflict(spot.id, start, end, exclude_reservation_id):
                return spot
        return None


    def quote_for(self, reservation: Reservation, spot_type: SpotType, features: Iterable[str]) -> PricingQuote:
        ctx = PricingContext(
            spot_type=spot_type,
            features=list(features or []),
            start_time=reservation.start_time,
            expected_duration=max(1, reservation.duration_minutes),
            user_id=reservation.user_id,
            membership_tier=reservation.membership_tier,
            discount_code=reservation.discount_code,
        )
        return self.pricing.quote(ctx)


    def _new_reservation(self, request: ReservationRequest, now: datetime) -> Reservation:
        return Reservation(
            id=None,
            user_id=request.user_id,
            spot_id=None,
            spot_type=request.spot_type,
            features=request.features,
            start_time=request.start_time,
            end_time=request.end_time,
            status=ReservationStatus.WAITLISTED,
            license_plate=request.vehicle.license_plate.strip(),
            created_at=now,
            make=request.vehicle.make,
            model=request.vehicle.model,
            color=request.vehicle.color,
            notes=request.notes,
            membership_tier=request.membership_tier.value if request.membership_tier else None,
            discount_code=request.discount_code.strip().upper() if request.discount_code else None,
        )


    def allocate(self, request: ReservationRequest) -> AllocationResult:
        now = self.clock.now()
        validate_request(request, now)

        reservation = self._new_reservation(request, now)
        try:
            for spot in self.candidate_spots(request.spot_type, request.features, request.spot_id):
                if self.conflict_index.has_conflict(spot.id, request.start_time, request.end_time):
                    continue

                quote = self.quote_for(reservation, spot.spot_type, spot.features)
                reservation.spot_id = spot.id
                reservation.spot_type = spot.spot_type
                reservation.features = list(spot.features)
                reservation.status = ReservationStatus.CONFIRMED
                reservation.quoted_rate = quote.final_rate
                reservation.quoted_total = quote.total_estimate

                with self.spot_lock(spot.id):
                    claimed = self.reservations.create_if_no_conflict(reservation)
                if not claimed:
                    logger.info("Spot %s was taken concurrently, trying next candidate", spot.id)
                    continue

                self._record_discount_usage(reservation, quote)
                self.publisher.emit(events.RESERVATION_CONFIRMED, reservation.to_dict(mask=mask_value))
                return AllocationResult(
                    status=AllocationStatus.CONFIRMED,
                    message="Reservation confirmed",
                    reservation_id=reservation.id,
                    spot_id=spot.id,
                    quote=quote,
                )

            if not request.allow_waitlist:
                return AllocationResult(
                    status=AllocationStatus.UNAVAILABLE,
                    message="No spot available for the requested time window",
                )

            waitlisted = self._new_reservation(request, now)
            quote = self.quote_for(waitlisted, request.spot_type, request.features)
            waitlisted.quoted_rate = quote.final_rate
            waitlisted.quoted_total = quote.total_estimate
            position = self.reservations.add_waitlisted(waitlisted)
        except sqlite3.Error:
            logger.error(
                "Allocation failed for user %s (%s, %s - %s)",
                request.user_id, request.spot_type.value, request.start_time, request.end_time, exc_info=True
            )
            raise UpstreamError("Failed to create reservation", "STORAGE_FAILED")

        self.publisher.emit(events.RESERVATION_WAITLISTED, waitlisted.to_dict(mask=mask_value))
        return AllocationResult(
            status=AllocationStatus.WAITLISTED,
            message=f"Added to waitlist at position {position}",
            reservation_id=waitlisted.id,
            waitlist_position=position,
            quote=quote,
        )


    def _record_discount_usage(self, reservation: Reservation, quote: PricingQuote) -> None:
        if not reservation.discount_code or quote.discount_code_discount <= 0:
            return
        code = self.discount_codes.resolve_discount_code(reservation.discount_code)
        if code is None:
            return
        if not self.discount_codes.record_usage(
            code, reservation.user_id, reservation.id, quote.surge_rate, quote.discount_code_discount
        ):
            logger.warning("Usage limit of discount code %s was reached during reservation %s",
                           code.code, reservation.id)
