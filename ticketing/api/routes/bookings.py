"""
Booking endpoints: reserve, list, cancel with refund, and ticket check-in.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.security import get_current_user, get_current_user_id
from ticketing.db.session import get_db
from ticketing.infrastructure.notifications import (
    Notifier,
    booking_cancelled,
    deliver,
    get_notifier,
    ticket_confirmation,
)
from ticketing.infrastructure.payment_gateway import PaymentGateway, get_payment_gateway
from ticketing.models.user import User
from ticketing.schemas.booking import (
    BookingCreate,
    BookingResponse,
    CancellationResponse,
    RefundQuoteResponse,
    RefundStatusResponse,
    VerificationResponse,
    VerifyTicketRequest,
    variant_of,
)
from ticketing.services.cancellation_service import cancel_booking, get_refund_quote, get_refund_status
from ticketing.services.event_service import get_event
from ticketing.services.reservation_service import create_reservation, get_user_bookings
from ticketing.services.verification_service import verify_ticket

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Reserve tickets for an event.

    Send `quantity` for a flat event or `items` for a categorized one. The
    response carries the ticket ID and its QR proof of purchase; a
    confirmation email goes out after the response.
    """
    booking = await create_reservation(
        db,
        booking_data.event_id,
        user.id,
        booking_data.to_request(),
        payment_reference=booking_data.payment_reference,
    )
    event = await get_event(db, booking.event_id)
    background_tasks.add_task(deliver, notifier, ticket_confirmation(user.email, event, booking))
    return BookingResponse.from_booking(booking)


@router.get("/", response_model=list[BookingResponse])
async def get_my_bookings(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    bookings = await get_user_bookings(db, user_id)
    return [BookingResponse.from_booking(b) for b in bookings]


@router.post("/verify", response_model=VerificationResponse)
async def verify_ticket_endpoint(
    verify_data: VerifyTicketRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Check a scanned ticket in at the gate.

    Only the event's organizer (or an admin) may scan. A ticket is admitted
    at most once.
    """
    result = await verify_ticket(db, verify_data.payload, verify_data.event_id, verifier=user)
    booking = result.booking
    return VerificationResponse(
        message="Ticket verified successfully",
        booking_id=booking.id,
        ticket_id=booking.ticket_id,
        event_id=booking.event_id,
        user_id=booking.user_id,
        variant=variant_of(booking),
        total_quantity=booking.total_quantity,
        verified_at=result.verified_at,
    )


@router.get("/{booking_id}/refund-quote", response_model=RefundQuoteResponse)
async def refund_quote_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Preview the refund a cancellation would pay out right now."""
    quote = await get_refund_quote(db, booking_id, user_id)
    return RefundQuoteResponse(
        booking_id=booking_id,
        percentage=quote.percentage,
        amount=quote.amount,
        tier_label=quote.tier_label,
        description=quote.description,
        days_until_event=quote.days_until_event,
        is_custom_policy=quote.is_custom_policy,
    )


@router.get("/{booking_id}/refund-status", response_model=RefundStatusResponse)
async def refund_status_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = await get_refund_status(db, booking_id, user_id, gateway)
    booking = result.booking
    return RefundStatusResponse(
        booking_id=booking.id,
        refund_status=booking.refund_status,
        refund_amount=booking.refund_amount,
        refund_reference=booking.refund_reference,
        refund_error=booking.refund_error,
        gateway_status=result.gateway_status,
    )


@router.delete("/{booking_id}", response_model=CancellationResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    background_tasks: BackgroundTasks,
    reason: Optional[str] = Query(None, max_length=500),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Cancel a booking and release its seats.

    The refund follows the event's policy at the moment of cancellation. A
    payment gateway failure does not undo the cancellation; the booking is
    left with refund_status=failed.
    """
    result = await cancel_booking(db, booking_id, user.id, gateway, reason=reason)
    booking = result.booking
    event = await get_event(db, booking.event_id)

    background_tasks.add_task(
        deliver,
        notifier,
        booking_cancelled(user.email, event.title, booking, result.quote.description),
    )

    return CancellationResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        cancelled=True,
        refund_status=booking.refund_status,
        refund_amount=booking.refund_amount or 0,
        refund_percentage=result.quote.percentage,
        refund_reference=booking.refund_reference,
        policy=result.quote.description,
    )
