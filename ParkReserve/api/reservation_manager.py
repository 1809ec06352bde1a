import functools
import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from . import events
from .crypto_utils import mask_value
from .errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ReservationError,
    UpstreamError,
    ValidationError
)
from .Models.AllocationResult import CancellationResult
from .Models.Reservation import (
    BLOCKING_STATUSES,
    Reservation,
    ReservationStatus,
    check_transition
)
from .Models.Spot import Spot

logger = logging.getLogger(__name__)

STATS_TIMEFRAMES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}


def storage_errors(func):
    """Report sqlite failures to callers as UpstreamError, with the details only in the log."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.Error:
            logger.error("Storage failure in %s args=%s", func.__name__, args[1:], exc_info=True)
            raise UpstreamError("Reservation storage is unavailable", "STORAGE_FAILED")
    return wrapper


class ReservationManager:

    def __init__(self, reservations, spots, allocation, refund_policy, publisher, clock,
                 no_show_grace: timedelta = timedelta(minutes=30),
                 check_in_early: timedelta = timedelta(minutes=15)):
        self.reservations = reservations
        self.spots = spots
        self.allocation = allocation
        self.refund_policy = refund_policy
        self.publisher = publisher
        self.clock = clock
        self.no_show_grace = no_show_grace
        self.check_in_early = check_in_early


    def _emit(self, event_type: str, reservation: Reservation, **extra) -> None:
        data = reservation.to_dict(mask=mask_value)
        data.update(extra)
        self.publisher.emit(event_type, data)


    def _owned(self, reservation_id: int, requester_id: str, override: bool = False) -> Reservation:
        reservation = self.reservations.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found", "RESERVATION_NOT_FOUND")
        if not override and reservation.user_id != requester_id:
            raise AuthorizationError("You can only manage your own reservations")
        return reservation


    def _transition(self, reservation: Reservation, target: ReservationStatus, now: datetime, **kwargs) -> None:
        check_transition(reservation.status, target)
        if not self.reservations.transition_status(reservation.id, [reservation.status], target, now, **kwargs):
            raise InvalidTransitionError(
                f"Reservation {reservation.id} changed status while it was being updated"
            )
        reservation.status = target
        reservation.updated_at = now


    def _release(self, reservation: Reservation, now: datetime, was_checked_in: bool) -> List[int]:
        """Free the spot of a reservation that stopped blocking and offer it to the waitlist."""
        if reservation.spot_id is None:
            return []
        if was_checked_in:
            self.spots.set_occupied(reservation.spot_id, False)
        start = max(now, reservation.start_time)
        if start >= reservation.end_time:
            return []
        return self.promote_into(reservation.spot_id, start, reservation.end_time)


    def _release_after_commit(self, reservation: Reservation, now: datetime, was_checked_in: bool) -> List[int]:
        # De statuswijziging staat al vast; promotie haalt de volgende expiry sweep in
        try:
            return self._release(reservation, now, was_checked_in)
        except (ReservationError, sqlite3.Error):
            logger.error(
                "Releasing spot %s of reservation %s (%s - %s) failed",
                reservation.spot_id, reservation.id, reservation.start_time, reservation.end_time, exc_info=True
            )
            return []


    @storage_errors
    def cancel(self, reservation_id: int, requester_id: str, reason: Optional[str] = None,
               override: bool = False) -> CancellationResult:
        now = self.clock.now()
        reservation = self._owned(reservation_id, requester_id, override)
        check_transition(reservation.status, ReservationStatus.CANCELLED)

        previous = reservation.status
        refund = self.refund_policy.refund_amount(reservation, now)
        self._transition(
            reservation, ReservationStatus.CANCELLED, now,
            cancellation_reason=reason or "Cancelled by user"
        )
        reservation.cancellation_reason = reason or "Cancelled by user"

        if previous in BLOCKING_STATUSES:
            self._release_after_commit(reservation, now, was_checked_in=previous == ReservationStatus.ACTIVE)

        self._emit(events.RESERVATION_CANCELLED, reservation, refund_amount=refund)
        logger.info("Reservation %s cancelled, refund %.2f", reservation.id, refund)
        return CancellationResult(
            success=True,
            message="Reservation cancelled",
            refund_amount=refund,
        )


    @storage_errors
    def check_in(self, reservation_id: int, requester_id: str) -> Reservation:
        now = self.clock.now()
        reservation = self._owned(reservation_id, requester_id)
        check_transition(reservation.status, ReservationStatus.ACTIVE)

        if now < reservation.start_time - self.check_in_early:
            raise ValidationError("Check-in is not open yet for this reservation", "CHECK_IN_TOO_EARLY")
        if now >= reservation.end_time:
            raise ValidationError("Reservation has already ended", "RESERVATION_ENDED")

        self._transition(reservation, ReservationStatus.ACTIVE, now, checked_in_at=now)
        reservation.checked_in_at = now
        self.spots.set_occupied(reservation.spot_id, True)

        self._emit(events.RESERVATION_ACTIVATED, reservation)
        return reservation


    @storage_errors
    def check_out(self, reservation_id: int, requester_id: str) -> Reservation:
        now = self.clock.now()
        reservation = self._owned(reservation_id, requester_id)
        self._transition(reservation, ReservationStatus.COMPLETED, now)
        self._release_after_commit(reservation, now, was_checked_in=True)

        self._emit(events.RESERVATION_COMPLETED, reservation)
        return reservation


    def _promote(self, reservation: Reservation, spot: Spot, now: datetime) -> bool:
        quote = self.allocation.quote_for(reservation, spot.spot_type, spot.features)
        reservation.spot_type = spot.spot_type
        reservation.features = list(spot.features)
        reservation.quoted_rate = quote.final_rate
        reservation.quoted_total = quote.total_estimate

        with self.allocation.spot_lock(spot.id):
            promoted = self.reservations.confirm_if_no_conflict(reservation, spot.id, now)
        if promoted:
            self._emit(events.RESERVATION_PROMOTED, reservation)
            logger.info("Waitlisted reservation %s promoted onto spot %s", reservation.id, spot.id)
        return promoted


    @storage_errors
    def promote_into(self, spot_id: int, start: datetime, end: datetime) -> List[int]:
        """Offer a freed window on spot_id to the oldest compatible waitlist entries."""
        now = self.clock.now()
        spot = self.spots.get_spot(spot_id)
        if spot is None or not spot.is_active:
            return []

        promoted = []
        for reservation in self.reservations.find_waitlisted_overlapping(start, end):
            if reservation.start_time <= now:
                continue
            if not spot.fits(reservation.spot_type, reservation.features):
                continue
            if self._promote(reservation, spot, now):
                promoted.append(reservation.id)
        return promoted


    @storage_errors
    def promote_waitlist(self) -> List[int]:
        now = self.clock.now()
        promoted = []
        for reservation in self.reservations.find_waitlisted(starting_after=now):
            spot = self.allocation.find_available_spot(
                reservation.spot_type, reservation.features, reservation.start_time, reservation.end_time
            )
            if spot is not None and self._promote(reservation, spot, now):
                promoted.append(reservation.id)
        return promoted


    @storage_errors
    def mark_no_shows(self) -> int:
        now = self.clock.now()
        count = 0
        for reservation in self.reservations.find_no_show_candidates(now - self.no_show_grace):
            if not self.reservations.transition_status(
                reservation.id, BLOCKING_STATUSES, ReservationStatus.NO_SHOW, now,
                cancellation_reason="No show"
            ):
                continue
            reservation.status = ReservationStatus.NO_SHOW
            count += 1
            self._release_after_commit(reservation, now, was_checked_in=False)
            self._emit(events.RESERVATION_NO_SHOW, reservation)
        if count:
            logger.info("Marked %d reservations as no-show", count)
        return count


    @storage_errors
    def expire_stale(self) -> int:
        now = self.clock.now()
        count = 0
        for reservation in self.reservations.find_ended(now):
            # Ingecheckt = afgerond, anders nooit gebruikt
            if reservation.status == ReservationStatus.ACTIVE:
                target, event_type = ReservationStatus.COMPLETED, events.RESERVATION_COMPLETED
            else:
                target, event_type = ReservationStatus.EXPIRED, events.RESERVATION_EXPIRED

            if not self.reservations.transition_status(reservation.id, [reservation.status], target, now):
                continue
            if reservation.status == ReservationStatus.ACTIVE and reservation.spot_id is not None:
                self.spots.set_occupied(reservation.spot_id, False)
            reservation.status = target
            count += 1
            self._emit(event_type, reservation)
        return count


    @storage_errors
    def dismiss_stale_waitlist(self) -> int:
        now = self.clock.now()
        count = 0
        for reservation in self.reservations.find_waitlisted(starting_before=now):
            if not self.reservations.transition_status(
                reservation.id, [ReservationStatus.WAITLISTED], ReservationStatus.DISMISSED, now,
                cancellation_reason="Waitlist entry expired"
            ):
                continue
            reservation.status = ReservationStatus.DISMISSED
            count += 1
            self._emit(events.RESERVATION_DISMISSED, reservation)
        return count


    @storage_errors
    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.reservations.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found", "RESERVATION_NOT_FOUND")
        return reservation


    @storage_errors
    def user_reservations(self, requester_id: str, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        return self.reservations.get_reservations_by_userid(requester_id, status)


    @storage_errors
    def waitlist_position(self, reservation_id: int) -> Optional[int]:
        return self.reservations.waitlist_position(self.get_reservation(reservation_id))


    @storage_errors
    def reservation_stats(self, timeframe: str = "day") -> Dict:
        if timeframe not in STATS_TIMEFRAMES:
            raise ValidationError(
                f"Timeframe must be one of {', '.join(STATS_TIMEFRAMES)}", "INVALID_TIMEFRAME"
            )
        since = self.clock.now() - STATS_TIMEFRAMES[timeframe]
        counts = self.reservations.count_by_status(since)
        summary = self.reservations.completed_summary(since)

        return {
            "timeframe": timeframe,
            "total_reservations": sum(counts.values()),
            "by_status": {status.value: n for status, n in counts.items()},
            "waitlisted": counts[ReservationStatus.WAITLISTED],
            "average_duration": summary["average_duration"],
            "occupancy_rate": round(self.spots.current_occupancy_ratio() * 100, 1),
            "revenue": summary["revenue"],
        }
