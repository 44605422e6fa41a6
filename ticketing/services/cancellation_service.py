"""
Cancellation workflow and refund bookkeeping.

User cancellation runs in two commits:

  1. A conditional UPDATE (guarded by "still active") flips the booking to
     cancelled and records the refund quote. Committing this releases the
     seats: the inventory ledger stops counting the booking immediately.
  2. Only then is the payment gateway called, with no transaction or lock
     held. Its outcome (processed / failed) is written in a second commit.

A gateway failure therefore never blocks the cancellation; the booking ends
up cancelled with refund_status=failed and is left for manual review.

Bulk cancellation by the organizer never calls the gateway. Every active
booking is marked cancelled_by_event with refund_status=pending and a
separate out-of-band process settles the refunds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.errors import (
    AlreadyCancelled,
    EventClosed,
    ExternalServiceError,
    NotFound,
    Unauthorized,
)
from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_cancellation, record_refund_outcome
from ticketing.infrastructure.payment_gateway import PaymentGateway, map_gateway_status
from ticketing.models.booking import (
    REFUND_FAILED,
    REFUND_NONE,
    REFUND_PENDING,
    REFUND_PROCESSED,
    Booking,
)
from ticketing.models.event import Event
from ticketing.models.user import User
from ticketing.services.auth_service import ensure_can_manage_event
from ticketing.services.refund_policy import RefundQuote, quote_booking_refund
from ticketing.services.reservation_service import lock_event

logger = get_logger(__name__)

DEFAULT_USER_REASON = "Cancelled by user"
DEFAULT_EVENT_REASON = "Event cancelled by organizer"


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    quote: RefundQuote


@dataclass(frozen=True)
class EventCancellationResult:
    event_id: int
    bookings_cancelled: int
    recipients: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RefundStatusResult:
    booking: Booking
    gateway_status: Optional[str] = None


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _owned_booking(db: AsyncSession, booking_id: int, user_id: int) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    if booking.user_id != user_id:
        raise Unauthorized("Not authorized to access this booking")
    return booking


async def _event_for(db: AsyncSession, booking: Booking) -> Event:
    result = await db.execute(select(Event).where(Event.id == booking.event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound(f"Event {booking.event_id} not found")
    return event


async def get_refund_quote(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    *,
    now: Optional[datetime] = None,
) -> RefundQuote:
    """What the user would get back if they cancelled right now."""
    booking = await _owned_booking(db, booking_id, user_id)
    if not booking.is_active:
        raise AlreadyCancelled()
    event = await _event_for(db, booking)
    return quote_booking_refund(booking, event, now=now)


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    gateway: PaymentGateway,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CancellationResult:
    if now is None:
        now = datetime.now(timezone.utc)

    booking = await _owned_booking(db, booking_id, user_id)
    if not booking.is_active:
        raise AlreadyCancelled()

    event = await _event_for(db, booking)
    if _as_aware(event.date) < now:
        raise EventClosed("Cannot cancel booking for past events")

    quote = quote_booking_refund(booking, event, now=now)
    will_refund = bool(booking.payment_reference) and quote.amount > 0
    refund_status = REFUND_PENDING if will_refund else REFUND_NONE

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.cancelled_by_user.is_(False),
            Booking.cancelled_by_event.is_(False),
        )
        .values(
            cancelled_by_user=True,
            cancellation_date=now,
            cancellation_reason=reason or DEFAULT_USER_REASON,
            refund_status=refund_status,
            refund_amount=quote.amount if will_refund else Decimal("0"),
            refund_percentage=quote.percentage,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise AlreadyCancelled()
    await db.commit()

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        user_id=user_id,
        event_id=booking.event_id,
        seats_released=booking.total_quantity,
        refund_percentage=quote.percentage,
        refund_amount=str(quote.amount),
        refund_tier=quote.tier_label,
    )
    record_cancellation("user")

    if will_refund:
        # Seats are already released; nothing below holds a lock
        await _issue_refund(db, booking, quote.amount, gateway)
    else:
        record_refund_outcome(REFUND_NONE)

    await db.refresh(booking)
    return CancellationResult(booking=booking, quote=quote)


async def _issue_refund(db: AsyncSession, booking: Booking, amount: Decimal, gateway: PaymentGateway) -> None:
    try:
        receipt = await gateway.issue_refund(booking.payment_reference, amount)
    except ExternalServiceError as e:
        logger.error(
            "refund_failed",
            booking_id=booking.id,
            payment_reference=booking.payment_reference,
            amount=str(amount),
            error=e.detail,
        )
        values = {"refund_status": REFUND_FAILED, "refund_error": str(e.detail)[:500]}
    except Exception as e:
        # The cancellation is already committed; the booking must not stay pending
        logger.exception(
            "refund_failed_unexpectedly",
            booking_id=booking.id,
            payment_reference=booking.payment_reference,
            amount=str(amount),
        )
        values = {"refund_status": REFUND_FAILED, "refund_error": f"Unexpected gateway error: {e}"[:500]}
    else:
        logger.info(
            "refund_processed",
            booking_id=booking.id,
            refund_reference=receipt.reference,
            amount=str(receipt.amount),
        )
        values = {
            "refund_status": REFUND_PROCESSED,
            "refund_reference": receipt.reference,
            "refund_amount": receipt.amount,
        }

    await db.execute(
        update(Booking)
        .where(Booking.id == booking.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    record_refund_outcome(values["refund_status"])


async def cancel_bookings_for_event(
    db: AsyncSession,
    event_id: int,
    acting_user: User,
    *,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EventCancellationResult:
    """
    Cancel an event and every active booking for it.

    Refunds are only marked pending (full snapshot amount); no gateway call
    is made here however many bookings are affected.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    reason = reason or DEFAULT_EVENT_REASON

    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound(f"Event {event_id} not found")
    ensure_can_manage_event(acting_user, event.organizer_id, "cancel this event")
    if event.cancelled:
        raise AlreadyCancelled("Event is already cancelled")

    # Queue behind in-flight reservations; none can start until we commit
    try:
        await lock_event(db, event_id)
    except EventClosed:
        raise AlreadyCancelled("Event is already cancelled")

    active = (
        Booking.event_id == event_id,
        Booking.cancelled_by_user.is_(False),
        Booking.cancelled_by_event.is_(False),
    )
    recipients_result = await db.execute(
        select(User.email).join(Booking, Booking.user_id == User.id).where(*active)
    )
    recipients = [email for (email,) in recipients_result.all()]

    update_result = await db.execute(
        update(Booking)
        .where(*active)
        .values(
            cancelled_by_event=True,
            cancellation_date=now,
            cancellation_reason=reason,
            refund_status=REFUND_PENDING,
            refund_amount=Booking.total_amount,
            refund_percentage=100,
        )
        .execution_options(synchronize_session=False)
    )
    cancelled_count = update_result.rowcount

    await db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(cancelled=True, cancellation_reason=reason)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        "event_cancelled",
        event_id=event_id,
        cancelled_by=acting_user.id,
        bookings_cancelled=cancelled_count,
    )
    if cancelled_count:
        record_cancellation("event", cancelled_count)
        record_refund_outcome(REFUND_PENDING, cancelled_count)

    return EventCancellationResult(
        event_id=event_id,
        bookings_cancelled=cancelled_count,
        recipients=recipients,
    )


async def get_refund_status(
    db: AsyncSession,
    booking_id: int,
    user_id: int,
    gateway: PaymentGateway,
) -> RefundStatusResult:
    """
    Current refund state for a booking, reconciled with the gateway on demand.

    Only bookings with a refund reference are polled. A gateway error is
    logged and the stored state returned unchanged. Reconciliation only moves
    forward: pending to processed or failed, or processed to failed.
    """
    booking = await _owned_booking(db, booking_id, user_id)
    if not booking.refund_reference:
        return RefundStatusResult(booking=booking)

    try:
        gateway_status = await gateway.get_refund_status(booking.refund_reference)
    except ExternalServiceError as e:
        logger.warning(
            "refund_status_unavailable",
            booking_id=booking.id,
            refund_reference=booking.refund_reference,
            error=e.detail,
        )
        return RefundStatusResult(booking=booking)

    mapped = map_gateway_status(gateway_status)
    # Accepted refunds read "pending" at the gateway until they settle
    if mapped == REFUND_PENDING and booking.refund_status in (REFUND_PROCESSED, REFUND_FAILED):
        mapped = None
    if mapped and mapped != booking.refund_status:
        logger.info(
            "refund_status_reconciled",
            booking_id=booking.id,
            previous=booking.refund_status,
            current=mapped,
            gateway_status=gateway_status,
        )
        booking.refund_status = mapped
        await db.commit()
        await db.refresh(booking)

    return RefundStatusResult(booking=booking, gateway_status=gateway_status)
