"""
Centralized error handling for reservation, capacity and billing failures.
Typed domain errors plus a reusable mapper so routes stay thin and new error types are easy to add.
"""
from __future__ import annotations

from typing import Any

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Constants: status codes
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_FORBIDDEN = 403
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500
STATUS_SERVICE_UNAVAILABLE = 503  # lock timeout, deadlock, connection loss


class TapparkError(Exception):
    """Base for all domain errors. `code` is the stable machine-readable errorCode."""

    code = "ERROR"
    status_code = STATUS_INTERNAL_ERROR
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: str | None = None, **data: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.data = data


# --- Precondition failures: returned to the caller, never retried by the core ---


class SpotUnavailable(TapparkError):
    code = "SPOT_UNAVAILABLE"
    status_code = STATUS_CONFLICT
    default_message = "Parking spot is no longer available"


class CapacityExceeded(TapparkError):
    code = "CAPACITY_EXCEEDED"
    status_code = STATUS_CONFLICT
    default_message = "No available capacity in this section"


class ActiveReservationExists(TapparkError):
    code = "ACTIVE_RESERVATION_EXISTS"
    status_code = STATUS_CONFLICT
    default_message = "You already have a reserved or active parking session"


class VehicleTypeMismatch(TapparkError):
    code = "VEHICLE_TYPE_MISMATCH"
    status_code = STATUS_BAD_REQUEST
    default_message = "Vehicle type does not match this parking spot"


class Unauthorized(TapparkError):
    code = "UNAUTHORIZED"
    status_code = STATUS_FORBIDDEN
    default_message = "You can only manage your own reservation"


class BookingNotAllowed(TapparkError):
    """Raised with code OUTSTANDING_PENALTY or INSUFFICIENT_BALANCE."""

    code = "BOOKING_NOT_ALLOWED"
    status_code = STATUS_FORBIDDEN
    default_message = "Booking is not allowed"

    def __init__(self, message: str | None = None, *, code: str | None = None, **data: Any):
        super().__init__(message, **data)
        if code:
            self.code = code


# --- Not found ---


class NotFound(TapparkError):
    code = "NOT_FOUND"
    status_code = STATUS_NOT_FOUND
    default_message = "Not found"


class ReservationNotFound(NotFound):
    code = "RESERVATION_NOT_FOUND"
    default_message = "Reservation not found"


class SpotNotFound(NotFound):
    code = "SPOT_NOT_FOUND"
    default_message = "Parking spot not found"


class SectionNotFound(NotFound):
    code = "SECTION_NOT_FOUND"
    default_message = "Parking section not found"


class VehicleNotFound(NotFound):
    code = "VEHICLE_NOT_FOUND"
    default_message = "Vehicle not found or does not belong to user"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


# --- Store / bug ---


class TransientStoreError(TapparkError):
    """Lock timeout, deadlock or connection loss. Safe to retry the whole operation."""

    code = "TRANSIENT_STORE_ERROR"
    status_code = STATUS_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Temporary database problem, please retry"


class InvariantViolation(TapparkError):
    """Should be unreachable; indicates a bug. Abort, never coerce."""

    code = "INVARIANT_VIOLATION"
    status_code = STATUS_INTERNAL_ERROR
    default_message = "Internal consistency check failed"


# ---------------------------------------------------------------------------
# HTTP mapping. Domain errors carry their own status; anything else is a 500.
# ---------------------------------------------------------------------------


def error_body(exc: TapparkError) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "errorCode": exc.code,
        "message": exc.message,
        "retryable": exc.retryable,
    }
    if exc.data:
        body["data"] = exc.data
    return body


def domain_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from a service call into an HTTPException.
    Uses the error's own status_code for TapparkError; otherwise returns 500 with the exception message.
    """
    if isinstance(exc, TapparkError):
        return HTTPException(status_code=exc.status_code, detail=error_body(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
