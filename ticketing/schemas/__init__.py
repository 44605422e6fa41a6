from ticketing.schemas.user import UserCreate, UserResponse, UserLogin, Token
from ticketing.schemas.event import (
    AvailabilityResponse,
    EventCreate,
    EventListResponse,
    EventResponse,
    EventUpdate,
)
from ticketing.schemas.booking import (
    BookingCreate,
    BookingResponse,
    CancellationResponse,
    RefundQuoteResponse,
    RefundStatusResponse,
    VerificationResponse,
    VerifyTicketRequest,
)

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "Token",
    "EventCreate", "EventUpdate", "EventResponse", "EventListResponse", "AvailabilityResponse",
    "BookingCreate", "BookingResponse", "CancellationResponse", "RefundQuoteResponse",
    "RefundStatusResponse", "VerificationResponse", "VerifyTicketRequest",
]
