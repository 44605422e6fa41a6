"""
Domain error taxonomy.

Every error is an HTTPException so FastAPI renders it without route-level
try/except; the `code` attribute gives clients a stable machine-readable kind
independent of the human-readable detail.

    BookingError
    ├── ValidationError          400
    │   └── EventClosed          400
    ├── NotFound                 404
    ├── Conflict                 409
    │   ├── DuplicateReservation
    │   ├── InventoryExceeded
    │   ├── AlreadyCancelled
    │   └── TicketAlreadyUsed
    ├── Unauthorized             403
    ├── EventMismatch            400
    ├── MalformedProof           400
    └── ExternalServiceError     502
"""

from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class BookingError(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "booking_error"
    default_detail: str = "Booking operation failed"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    default_detail = "Invalid reservation request"


class EventClosed(ValidationError):
    code = "event_closed"
    default_detail = "Event is cancelled or already took place"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Resource not found"


class Conflict(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_detail = "Request conflicts with current state"


class DuplicateReservation(Conflict):
    code = "duplicate_reservation"
    default_detail = "You already have a booking for this event"


class InventoryExceeded(Conflict):
    code = "inventory_exceeded"
    default_detail = "Not enough seats available"


class AlreadyCancelled(Conflict):
    code = "already_cancelled"
    default_detail = "Booking is already cancelled"


class TicketAlreadyUsed(Conflict):
    code = "ticket_already_used"
    default_detail = "Ticket has already been verified"


class Unauthorized(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"
    default_detail = "Not authorized to perform this action"


class EventMismatch(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "event_mismatch"
    default_detail = "Ticket does not belong to this event"


class MalformedProof(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "malformed_proof"
    default_detail = "Invalid QR code data"


class ExternalServiceError(BookingError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "external_service_error"
    default_detail = "External service call failed"


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=exc.headers,
    )
