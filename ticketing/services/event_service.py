"""
Event service handling CRUD operations.

Capacity edits are constrained once bookings exist: the pricing mode cannot
flip and categories cannot be dropped while active bookings reference the
event, and no pool may shrink below what is already reserved. Prices may
change freely; bookings keep their own snapshot.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.errors import Conflict, NotFound, ValidationError
from ticketing.core.logging import get_logger
from ticketing.models.event import Event, TicketCategory
from ticketing.models.user import User
from ticketing.schemas.event import EventCreate, EventUpdate, RefundPolicyIn
from ticketing.services.auth_service import ensure_can_manage_event
from ticketing.services.inventory_ledger import compute_availability, count_active_bookings
from ticketing.services.reservation_service import lock_and_reload_event

logger = get_logger(__name__)


def _apply_refund_policy(event: Event, policy: RefundPolicyIn) -> None:
    event.refund_full_percentage = policy.seven_days_or_more
    event.refund_partial_percentage = policy.one_to_seven_days
    event.refund_none_percentage = policy.less_than_one_day
    event.refund_policy_description = policy.description


async def create_event(db: AsyncSession, event_data: EventCreate, organizer_id: int) -> Event:
    """Create a new event in flat or categorized mode."""
    if event_data.date <= datetime.now(timezone.utc):
        raise ValidationError("Event date must be in the future")

    event = Event(
        title=event_data.title,
        description=event_data.description,
        date=event_data.date,
        location=event_data.location,
        organizer_id=organizer_id,
        cancelled=False,
        version=1,
    )

    if event_data.ticket_categories:
        event.has_ticket_categories = True
        event.ticket_categories = [
            TicketCategory(name=c.name, price=c.price, total_seats=c.total_seats)
            for c in event_data.ticket_categories
        ]
        event.total_seats = sum(c.total_seats for c in event_data.ticket_categories)
        event.price = min(c.price for c in event_data.ticket_categories)
    else:
        event.has_ticket_categories = False
        event.ticket_categories = []
        event.total_seats = event_data.seat_count
        event.price = event_data.price

    if event_data.refund_policy:
        _apply_refund_policy(event, event_data.refund_policy)

    db.add(event)
    await db.flush()
    await db.refresh(event)

    logger.info(
        "event_created",
        event_id=event.id,
        title=event.title,
        seats=event.total_seats,
        categories=len(event.ticket_categories),
    )
    return event


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event by ID."""
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()

    if not event:
        raise NotFound(f"Event {event_id} not found")
    return event


async def update_event(db: AsyncSession, event_id: int, event_data: EventUpdate, user: User) -> Event:
    event = await get_event(db, event_id)
    ensure_can_manage_event(user, event.organizer_id, "edit this event")
    if event.cancelled:
        raise Conflict("Cannot edit a cancelled event")

    # Capacity edits are checked against reservations, so serialize with them
    event = await lock_and_reload_event(db, event_id)
    active_bookings = await count_active_bookings(db, event_id)
    availability = await compute_availability(db, event)

    if event_data.date is not None:
        if event_data.date <= datetime.now(timezone.utc):
            raise ValidationError("Event date must be in the future")
        event.date = event_data.date

    for field in ("title", "description", "location"):
        value = getattr(event_data, field)
        if value is not None:
            setattr(event, field, value)

    if event_data.ticket_categories is not None:
        if not event.has_ticket_categories and active_bookings:
            raise Conflict("Cannot switch to ticket categories while bookings exist")

        existing = {c.name: c for c in event.ticket_categories}
        incoming = {c.name: c for c in event_data.ticket_categories}
        for name in existing:
            pool = availability.pool(name) if event.has_ticket_categories else None
            if name not in incoming and pool is not None and pool.reserved:
                raise Conflict(f'Cannot remove category "{name}" while bookings exist')

        categories = []
        for name, data in incoming.items():
            pool = availability.pool(name) if event.has_ticket_categories else None
            if pool is not None and data.total_seats < pool.reserved:
                raise Conflict(f'Category "{name}" already has {pool.reserved} seats reserved')
            category = existing.get(name) or TicketCategory(name=name)
            category.price = data.price
            category.total_seats = data.total_seats
            categories.append(category)

        event.ticket_categories = categories
        event.has_ticket_categories = True
        event.total_seats = sum(c.total_seats for c in categories)
        event.price = min(Decimal(c.price) for c in categories)

    elif event_data.seat_count is not None or event_data.price is not None:
        if event.has_ticket_categories:
            if active_bookings:
                raise Conflict("Cannot switch to flat pricing while bookings exist")
            if event_data.seat_count is None:
                raise ValidationError("'seat_count' is required to switch to flat pricing")
            event.has_ticket_categories = False
            event.ticket_categories = []
        if event_data.seat_count is not None:
            if event_data.seat_count < availability.total_reserved:
                raise Conflict(f"{availability.total_reserved} seats are already reserved")
            event.total_seats = event_data.seat_count
        if event_data.price is not None:
            event.price = event_data.price

    if event_data.refund_policy is not None:
        _apply_refund_policy(event, event_data.refund_policy)

    await db.flush()
    await db.refresh(event)
    logger.info("event_updated", event_id=event.id, updated_by=user.id)
    return event


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[Event], int]:
    """List events with pagination. Uses the ix_events_date index."""
    query = select(Event)

    if upcoming_only:
        query = query.where(Event.date >= datetime.now(timezone.utc), Event.cancelled.is_(False))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.date.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(events_query)
    events = list(result.scalars().all())

    return events, total
