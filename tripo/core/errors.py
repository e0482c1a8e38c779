"""Error taxonomy for the booking engine.

Every error carries a stable machine-readable ``code`` and the HTTP status it
maps to. Services raise these; a single exception handler in ``tripo.main``
renders them as ``{"error": {"code": ..., "message": ...}}``.
"""


class TripoError(Exception):
    """Base class for all business errors."""
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# ===================== Validation =====================

class ValidationFailure(TripoError):
    """Bad shape or range of input. Rejected before any transaction starts."""
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid input data"


class InvalidAmount(ValidationFailure):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a finite, non-negative number"


class BelowMinimumPayout(ValidationFailure):
    code = "BELOW_MINIMUM_PAYOUT"
    default_message = "Requested payout is below the minimum amount"


class InsufficientBalance(ValidationFailure):
    code = "INSUFFICIENT_BALANCE"
    default_message = "Insufficient balance for this payout"


class NoRefundEligible(ValidationFailure):
    code = "NO_REFUND_ELIGIBLE"
    default_message = "No refund is eligible based on the cancellation policy"


# ===================== Not found =====================

class NotFound(TripoError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class RideNotFound(NotFound):
    code = "RIDE_NOT_FOUND"
    default_message = "Ride not found"


class BookingNotFound(NotFound):
    code = "BOOKING_NOT_FOUND"
    default_message = "Booking not found"


class PaymentNotFound(NotFound):
    code = "PAYMENT_NOT_FOUND"
    default_message = "Payment not found"


class PayoutNotFound(NotFound):
    code = "PAYOUT_NOT_FOUND"
    default_message = "Payout not found"


# ===================== Authorization =====================

class Forbidden(TripoError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Forbidden"


class Unauthorized(Forbidden):
    code = "UNAUTHORIZED"
    default_message = "You are not allowed to perform this action"


class SelfBookingForbidden(Forbidden):
    code = "SELF_BOOKING_FORBIDDEN"
    default_message = "Cannot book your own ride"


# ===================== Business conflicts =====================

class Conflict(TripoError):
    """A business rule violated by current state. Never retried automatically."""
    code = "CONFLICT"
    status_code = 409
    default_message = "Conflict with current state"


class InsufficientSeats(Conflict):
    code = "INSUFFICIENT_SEATS"
    default_message = "Not enough available seats"


class DuplicateActiveBooking(Conflict):
    code = "DUPLICATE_ACTIVE_BOOKING"
    default_message = "You already have an active booking for this ride"


class RideNotBookable(Conflict):
    code = "RIDE_NOT_BOOKABLE"
    default_message = "Ride is not available for booking"


class InvalidTransition(Conflict):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid status transition from {from_status} to {to_status}",
            **{"from": from_status, "to": to_status},
        )


class InvalidRideTransition(InvalidTransition):
    code = "INVALID_RIDE_TRANSITION"


class SeatEntryMissing(Conflict):
    code = "SEAT_ENTRY_MISSING"
    default_message = "Passenger has no seat entry on this ride"


class InvalidBookingStatus(Conflict):
    code = "INVALID_BOOKING_STATUS"
    default_message = "Booking is not in a valid status for this operation"


class InvalidPaymentStatus(Conflict):
    code = "INVALID_PAYMENT_STATUS"
    default_message = "Payment is not in a valid status for this operation"


class PaymentAlreadyCompleted(Conflict):
    code = "PAYMENT_ALREADY_COMPLETED"
    default_message = "Payment for this booking is already completed"


class InvalidPayoutStatus(Conflict):
    code = "INVALID_PAYOUT_STATUS"
    default_message = "Payout is not in a valid status for this operation"


class InventoryInvariantViolation(Conflict):
    code = "INVENTORY_INVARIANT_VIOLATION"
    status_code = 500
    default_message = "Seat inventory invariant violated"


# ===================== Transient / downstream =====================

class ConcurrencyConflict(TripoError):
    """A competing transaction kept winning; safe for the client to retry."""
    code = "CONCURRENCY_CONFLICT"
    status_code = 503
    default_message = "The resource is busy, please retry"


class DownstreamFailure(TripoError):
    code = "DOWNSTREAM_FAILURE"
    status_code = 502
    default_message = "Downstream service failed"


class GatewayFailure(DownstreamFailure):
    code = "GATEWAY_ERROR"
    default_message = "Payment gateway request failed"
