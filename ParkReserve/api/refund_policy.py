from datetime import datetime, timedelta

from .Models.Reservation import Reservation, ReservationStatus


class RefundPolicy:
    """
    Refund owed when a reservation is cancelled.

    Cancelling at least `full_refund_notice` before the start returns the full
    quoted total, later but still before the start returns
    `partial_refund_percent` of it, after the start nothing. Waitlist entries
    never held a spot, so they are not refunded.
    """

    def __init__(self, full_refund_notice: timedelta = timedelta(hours=2), partial_refund_percent: float = 50.0):
        if not 0 <= partial_refund_percent <= 100:
            raise ValueError("partial_refund_percent must be between 0 and 100")
        self.full_refund_notice = full_refund_notice
        self.partial_refund_percent = partial_refund_percent

    @classmethod
    def from_settings(cls, settings) -> "RefundPolicy":
        return cls(
            full_refund_notice=timedelta(hours=settings.full_refund_hours),
            partial_refund_percent=settings.partial_refund_percent,
        )

    def refund_amount(self, reservation: Reservation, now: datetime) -> float:
        total = float(reservation.quoted_total or 0.0)
        if reservation.status == ReservationStatus.WAITLISTED or total <= 0:
            return 0.0

        notice = reservation.start_time - now
        if notice >= self.full_refund_notice:
            amount = total
        elif notice > timedelta(0):
            amount = total * self.partial_refund_percent / 100
        else:
            amount = 0.0

        return round(max(0.0, min(total, amount)), 2)
