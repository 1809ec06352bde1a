class ReservationError(Exception):
    """Base class for every failure the engine reports to a caller."""

    status_code = 400
    default_code = "RESERVATION_ERROR"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(ReservationError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class ConflictError(ReservationError):
    status_code = 409
    default_code = "SPOT_CONFLICT"


class InvalidTransitionError(ConflictError):
    default_code = "INVALID_TRANSITION"


class NotFoundError(ReservationError):
    status_code = 404
    default_code = "NOT_FOUND"


class AuthorizationError(ReservationError):
    status_code = 403
    default_code = "NOT_RESERVATION_OWNER"


class UpstreamError(ReservationError):
    status_code = 502
    default_code = "UPSTREAM_FAILURE"
