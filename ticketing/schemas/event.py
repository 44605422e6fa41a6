"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class TicketCategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    price: Decimal = Field(..., ge=0)
    total_seats: int = Field(..., gt=0, le=100000)


class TicketCategoryResponse(BaseModel):
    name: str
    price: Decimal
    total_seats: int

    model_config = {"from_attributes": True}


class RefundPolicyIn(BaseModel):
    seven_days_or_more: int = Field(..., ge=0, le=100)
    one_to_seven_days: int = Field(..., ge=0, le=100)
    less_than_one_day: int = Field(..., ge=0, le=100)
    description: Optional[str] = Field(None, max_length=255)


def _as_utc(value):
    # Naive datetimes are taken to be UTC
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _unique_category_names(categories):
    if categories is None:
        return categories
    names = [c.name for c in categories]
    if len(names) != len(set(names)):
        raise ValueError("Ticket category names must be unique")
    return categories


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    date: datetime
    location: Optional[str] = Field(None, max_length=255)
    price: Decimal = Field(Decimal("0"), ge=0)
    seat_count: Optional[int] = Field(None, gt=0, le=100000)
    ticket_categories: Optional[list[TicketCategoryIn]] = Field(None, min_length=1, max_length=5)
    refund_policy: Optional[RefundPolicyIn] = None

    check_category_names = field_validator("ticket_categories")(_unique_category_names)
    normalize_date = field_validator("date")(_as_utc)

    @model_validator(mode="after")
    def capacity_mode(self):
        if self.ticket_categories is None and self.seat_count is None:
            raise ValueError("Provide either 'seat_count' or 'ticket_categories'")
        if self.ticket_categories is not None and self.seat_count is not None:
            raise ValueError("'seat_count' is derived from ticket categories")
        return self


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    date: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0)
    seat_count: Optional[int] = Field(None, gt=0, le=100000)
    ticket_categories: Optional[list[TicketCategoryIn]] = Field(None, min_length=1, max_length=5)
    refund_policy: Optional[RefundPolicyIn] = None

    check_category_names = field_validator("ticket_categories")(_unique_category_names)
    normalize_date = field_validator("date")(_as_utc)


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    date: datetime
    location: Optional[str]
    price: Decimal
    seat_count: int = Field(validation_alias="total_seats")
    has_ticket_categories: bool
    ticket_categories: list[TicketCategoryResponse] = []
    cancelled: bool
    organizer_id: int
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class PoolAvailabilityResponse(BaseModel):
    category_name: Optional[str]
    capacity: int
    reserved: int
    available: int


class AvailabilityResponse(BaseModel):
    event_id: int
    mode: str
    pools: list[PoolAvailabilityResponse]
    total_capacity: int
    total_reserved: int
    total_available: int

    @classmethod
    def from_availability(cls, availability) -> "AvailabilityResponse":
        return cls(
            event_id=availability.event_id,
            mode=availability.mode,
            pools=[
                PoolAvailabilityResponse(
                    category_name=p.name,
                    capacity=p.capacity,
                    reserved=p.reserved,
                    available=p.available,
                )
                for p in availability.pools
            ],
            total_capacity=availability.total_capacity,
            total_reserved=availability.total_reserved,
            total_available=availability.total_available,
        )


class EventCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class EventCancelResponse(BaseModel):
    message: str
    event_id: int
    bookings_cancelled: int
