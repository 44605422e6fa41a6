"""
Pydantic schemas for booking-related request/response validation.

Quantity ranges are enforced by the reservation coordinator (400
ValidationError) rather than here, so API clients and direct service callers
get the same refusal.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ticketing.models.booking import Booking
from ticketing.services.reservation_service import (
    CategorizedReservationRequest,
    CategoryLine,
    FlatReservationRequest,
)


class TicketItemRequest(BaseModel):
    category_name: str = Field(..., min_length=1, max_length=100)
    quantity: int


class BookingCreate(BaseModel):
    event_id: int
    quantity: Optional[int] = None
    items: Optional[list[TicketItemRequest]] = None
    payment_reference: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def exactly_one_variant(self):
        if (self.quantity is None) == (self.items is None):
            raise ValueError("Provide either 'quantity' or 'items'")
        return self

    def to_request(self):
        if self.items is not None:
            return CategorizedReservationRequest(
                items=[CategoryLine(category_name=i.category_name, quantity=i.quantity) for i in self.items]
            )
        return FlatReservationRequest(quantity=self.quantity)


class FlatVariant(BaseModel):
    mode: Literal["flat"] = "flat"
    quantity: int
    unit_price: Decimal


class BookingItemResponse(BaseModel):
    category_name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class CategorizedVariant(BaseModel):
    mode: Literal["categorized"] = "categorized"
    items: list[BookingItemResponse]


BookingVariant = Union[FlatVariant, CategorizedVariant]


def variant_of(booking: Booking) -> BookingVariant:
    if booking.is_categorized:
        return CategorizedVariant(items=[BookingItemResponse.model_validate(i) for i in booking.items])
    return FlatVariant(quantity=booking.quantity, unit_price=booking.unit_price)


class BookingResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    variant: BookingVariant = Field(..., discriminator="mode")
    total_amount: Decimal
    total_quantity: int
    ticket_id: str
    proof_payload: str
    proof_image: Optional[str] = None
    verified: bool
    verified_at: Optional[datetime] = None
    cancelled_by_user: bool
    cancelled_by_event: bool
    cancellation_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_status: str
    refund_amount: Optional[Decimal] = None
    refund_reference: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            user_id=booking.user_id,
            event_id=booking.event_id,
            variant=variant_of(booking),
            total_amount=booking.total_amount,
            total_quantity=booking.total_quantity,
            ticket_id=booking.ticket_id,
            proof_payload=booking.proof_payload,
            proof_image=booking.proof_image,
            verified=booking.verified,
            verified_at=booking.verified_at,
            cancelled_by_user=booking.cancelled_by_user,
            cancelled_by_event=booking.cancelled_by_event,
            cancellation_date=booking.cancellation_date,
            cancellation_reason=booking.cancellation_reason,
            refund_status=booking.refund_status,
            refund_amount=booking.refund_amount,
            refund_reference=booking.refund_reference,
            created_at=booking.created_at,
        )


class VerifyTicketRequest(BaseModel):
    payload: str = Field(..., min_length=1, max_length=4096)
    event_id: int


class VerificationResponse(BaseModel):
    message: str
    booking_id: int
    ticket_id: str
    event_id: int
    user_id: int
    variant: BookingVariant = Field(..., discriminator="mode")
    total_quantity: int
    verified_at: datetime


class RefundQuoteResponse(BaseModel):
    booking_id: int
    percentage: int
    amount: Decimal
    tier_label: str
    description: str
    days_until_event: float
    is_custom_policy: bool


class CancellationResponse(BaseModel):
    message: str
    booking_id: int
    cancelled: bool
    refund_status: str
    refund_amount: Decimal
    refund_percentage: int
    refund_reference: Optional[str] = None
    policy: str


class RefundStatusResponse(BaseModel):
    booking_id: int
    refund_status: str
    refund_amount: Optional[Decimal] = None
    refund_reference: Optional[str] = None
    refund_error: Optional[str] = None
    gateway_status: Optional[str] = None
