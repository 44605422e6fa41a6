"""
Reservation coordinator with concurrency-safe capacity enforcement.

CONCURRENCY STRATEGY: Per-event serialization through the event row
===================================================================

Problem:
  Capacity is derived from bookings (see inventory_ledger). Checking it and
  inserting a booking are two statements; two requests at the boundary can
  both see room and both insert. Result: overbooking.

Solution:
  Every reservation transaction first bumps the event's version:

    UPDATE events SET version = version + 1 WHERE id = :event_id

  The row write lock this takes is held until commit, so reservations for the
  same event run one at a time from that point on. Only then do we re-read
  the event row (capacity, mode, prices), recompute availability and insert.
  Any other writer for the event, event edits included, has either
  committed (and its booking is counted) or is still waiting on the lock.
  On SQLite the UPDATE takes the database write lock, which serializes the
  same way.

  Unlike a compare-and-swap on the version, waiting on the lock never turns a
  request that would fit into a spurious "try again" failure: exactly as many
  requests succeed as there are seats.

Other races closed by the store:
  - Duplicate active booking: checked under the lock, backed by a partial
    unique index on (user_id, event_id)
  - Ticket id collision: unique constraint on ticket_id; the whole attempt is
    rolled back and retried with a fresh id and a fresh capacity check
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.config import get_settings
from ticketing.core.errors import (
    BookingError,
    Conflict,
    DuplicateReservation,
    EventClosed,
    InventoryExceeded,
    NotFound,
    ValidationError,
)
from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_reservation_attempt, reservation_latency, reservation_retries
from ticketing.models.booking import MODE_CATEGORIZED, MODE_FLAT, Booking, BookingItem
from ticketing.models.event import Event
from ticketing.models.user import User
from ticketing.services import proof_codec
from ticketing.services.inventory_ledger import Availability, compute_availability
from ticketing.services.ticket_identity import issue_ticket_id

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class FlatReservationRequest:
    quantity: int


@dataclass(frozen=True)
class CategoryLine:
    category_name: str
    quantity: int


@dataclass(frozen=True)
class CategorizedReservationRequest:
    items: list[CategoryLine]


ReservationRequest = Union[FlatReservationRequest, CategorizedReservationRequest]


@dataclass(frozen=True)
class PricedLine:
    """A validated request line with the price snapshot taken from the event."""

    pool: Optional[str]
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


async def load_event(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound(f"Event {event_id} not found")
    return event


async def find_active_booking(db: AsyncSession, user_id: int, event_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(
            Booking.user_id == user_id,
            Booking.event_id == event_id,
            Booking.cancelled_by_user.is_(False),
            Booking.cancelled_by_event.is_(False),
        )
    )
    return result.scalars().first()


def ensure_event_open(event: Event, now: datetime) -> None:
    if event.cancelled:
        raise EventClosed("Cannot book a cancelled event")
    event_date = event.date
    if event_date.tzinfo is None:
        event_date = event_date.replace(tzinfo=timezone.utc)
    if event_date <= now:
        raise EventClosed("Cannot book past events")


def _check_quantity(quantity, label: str) -> None:
    limit = settings.MAX_TICKETS_PER_BOOKING
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= limit:
        raise ValidationError(f"Quantity for {label} must be between 1 and {limit}")


def price_request(event: Event, request: ReservationRequest) -> list[PricedLine]:
    """Validate a request against the event's mode and snapshot its prices."""
    if event.has_ticket_categories:
        if not isinstance(request, CategorizedReservationRequest):
            raise ValidationError("Ticket items are required for this event")
        if not request.items:
            raise ValidationError("Ticket items are required for this event")
        if len(request.items) > settings.MAX_TICKET_CATEGORIES:
            raise ValidationError(
                f"At most {settings.MAX_TICKET_CATEGORIES} ticket categories per booking"
            )

        names = [item.category_name for item in request.items]
        if len(names) != len(set(names)):
            raise ValidationError("Each ticket category may appear only once")

        for item in request.items:
            _check_quantity(item.quantity, f'"{item.category_name}"')

        lines = []
        for item in request.items:
            category = event.category(item.category_name)
            if category is None:
                raise ValidationError(f'Ticket category "{item.category_name}" not found')
            lines.append(
                PricedLine(pool=category.name, quantity=item.quantity, unit_price=Decimal(category.price))
            )
        return lines

    if not isinstance(request, FlatReservationRequest):
        raise ValidationError("This event does not use ticket categories; provide a quantity")
    _check_quantity(request.quantity, "this booking")
    return [PricedLine(pool=None, quantity=request.quantity, unit_price=Decimal(event.price))]


def ensure_capacity(availability: Availability, lines: list[PricedLine]) -> None:
    for line in lines:
        pool = availability.pool(line.pool)
        if pool is None:
            raise ValidationError(f'Ticket category "{line.pool}" not found')
        if pool.reserved + line.quantity > pool.capacity:
            logger.warning(
                "reservation_rejected_no_seats",
                event_id=availability.event_id,
                pool=line.pool,
                requested=line.quantity,
                available=pool.available,
            )
            if line.pool is None:
                raise InventoryExceeded(
                    f"Not enough seats. Requested: {line.quantity}, Available: {pool.available}"
                )
            raise InventoryExceeded(
                f'Not enough seats available for "{line.pool}". Available: {pool.available}'
            )


async def lock_event(db: AsyncSession, event_id: int) -> None:
    """
    Take the per-event write lock for the rest of the transaction.

    Guarded by `cancelled = false` so a reservation that queued behind a bulk
    event cancellation cannot slip in after it commits.
    """
    result = await db.execute(
        update(Event)
        .where(Event.id == event_id, Event.cancelled.is_(False))
        .values(version=Event.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise EventClosed("Cannot book a cancelled event")


async def lock_and_reload_event(db: AsyncSession, event_id: int) -> Event:
    """
    Take the per-event lock, then re-read the event row and its categories.

    Whatever was loaded before the lock may predate a capacity or pricing
    edit that committed while this transaction was queued.
    """
    await lock_event(db, event_id)
    result = await db.execute(
        select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_user_bookings(db: AsyncSession, user_id: int) -> list[Booking]:
    """Get all bookings for a user, cancelled ones included."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


def build_booking(
    event: Event,
    user_id: int,
    lines: list[PricedLine],
    ticket_id: str,
    proof: proof_codec.ProofOfPurchase,
    payment_reference: Optional[str],
) -> Booking:
    total_amount = sum((line.subtotal for line in lines), Decimal("0"))
    total_quantity = sum(line.quantity for line in lines)

    booking = Booking(
        user_id=user_id,
        event_id=event.id,
        total_amount=total_amount,
        total_quantity=total_quantity,
        ticket_id=ticket_id,
        proof_payload=proof.payload,
        proof_image=proof.image,
        verified=False,
        payment_reference=payment_reference,
        cancelled_by_user=False,
        cancelled_by_event=False,
        refund_status="none",
    )

    if event.has_ticket_categories:
        booking.pricing_mode = MODE_CATEGORIZED
        booking.items = [
            BookingItem(
                category_name=line.pool,
                quantity=line.quantity,
                unit_price=line.unit_price,
                subtotal=line.subtotal,
            )
            for line in lines
        ]
    else:
        line = lines[0]
        booking.pricing_mode = MODE_FLAT
        booking.quantity = line.quantity
        booking.unit_price = line.unit_price
        booking.items = []

    return booking


async def create_reservation(
    db: AsyncSession,
    event_id: int,
    user_id: int,
    request: ReservationRequest,
    *,
    payment_reference: Optional[str] = None,
) -> Booking:
    """
    Validate and commit a new booking.

    Checks run in this order: event exists, user exists, event open, no
    active booking for the pair, request valid, categories exist, capacity.
    The capacity check and the insert share one transaction behind the
    per-event lock; the transaction is committed here so the lock is
    released before the caller does anything slow.
    """
    start = time.perf_counter()
    try:
        booking = await _reserve(db, event_id, user_id, request, payment_reference)
    except Conflict:
        record_reservation_attempt("conflict")
        raise
    except BookingError:
        record_reservation_attempt("rejected")
        raise
    except Exception:
        record_reservation_attempt("error")
        raise

    record_reservation_attempt("success")
    reservation_latency.observe(time.perf_counter() - start)
    return booking


async def _reserve(
    db: AsyncSession,
    event_id: int,
    user_id: int,
    request: ReservationRequest,
    payment_reference: Optional[str],
) -> Booking:
    max_attempts = settings.RESERVATION_MAX_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        event = await load_event(db, event_id)

        user = await db.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")

        # Cheap early refusals; all of them are repeated under the lock
        ensure_event_open(event, datetime.now(timezone.utc))
        if await find_active_booking(db, user_id, event_id):
            raise DuplicateReservation()
        price_request(event, request)

        # From here until commit, no other reservation or event edit can run
        event = await lock_and_reload_event(db, event_id)
        try:
            ensure_event_open(event, datetime.now(timezone.utc))
            if await find_active_booking(db, user_id, event_id):
                raise DuplicateReservation()
            lines = price_request(event, request)
            availability = await compute_availability(db, event)
            ensure_capacity(availability, lines)
        except BookingError:
            await db.rollback()
            raise

        ticket_id = await issue_ticket_id(db, settings.TICKET_ID_MAX_ATTEMPTS)
        proof = proof_codec.encode(ticket_id, event.id)
        booking = build_booking(event, user_id, lines, ticket_id, proof, payment_reference)
        db.add(booking)

        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            if await find_active_booking(db, user_id, event_id):
                raise DuplicateReservation()
            reservation_retries.inc()
            logger.info(
                "reservation_retry",
                event_id=event_id,
                attempt=attempt,
                reason="ticket_id_conflict",
            )
            continue

        await db.commit()
        await db.refresh(booking)

        logger.info(
            "booking_created",
            booking_id=booking.id,
            user_id=user_id,
            event_id=event_id,
            mode=booking.pricing_mode,
            quantity=booking.total_quantity,
            total_amount=str(booking.total_amount),
            attempt=attempt,
        )
        return booking

    raise Conflict("Booking failed due to high demand. Please try again.")
