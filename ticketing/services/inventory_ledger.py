"""
Inventory ledger: derives booked and available capacity from bookings.

There is no seat counter anywhere. Reserved capacity is always the aggregate
over active bookings (neither cancelled_by_user nor cancelled_by_event), so
a cancellation releases its seats simply by being flagged.

Pools:
  - flat event        -> one pool (name None) sized event.total_seats; every
                         active booking counts its total_quantity, whatever
                         variant it was created under
  - categorized event -> one pool per TicketCategory; only categorized
                         booking items with that category name count

The ledger only reads. Callers that need the figures to stay true until they
insert (the reservation coordinator) must hold the per-event lock.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.models.booking import MODE_CATEGORIZED, MODE_FLAT, Booking, BookingItem
from ticketing.models.event import Event


@dataclass(frozen=True)
class PoolAvailability:
    name: Optional[str]
    capacity: int
    reserved: int

    @property
    def available(self) -> int:
        return max(self.capacity - self.reserved, 0)


@dataclass(frozen=True)
class Availability:
    event_id: int
    mode: str
    pools: list[PoolAvailability] = field(default_factory=list)

    def pool(self, name: Optional[str] = None) -> Optional[PoolAvailability]:
        for pool in self.pools:
            if pool.name == name:
                return pool
        return None

    @property
    def total_capacity(self) -> int:
        return sum(p.capacity for p in self.pools)

    @property
    def total_reserved(self) -> int:
        return sum(p.reserved for p in self.pools)

    @property
    def total_available(self) -> int:
        return sum(p.available for p in self.pools)


def _active_clause():
    return (Booking.cancelled_by_user.is_(False)) & (Booking.cancelled_by_event.is_(False))


def build_availability(
    event_id: int,
    mode: str,
    capacities: dict,
    reserved: dict,
) -> Availability:
    """Assemble the view from pool capacities and reserved counts."""
    pools = [
        PoolAvailability(name=name, capacity=capacity, reserved=int(reserved.get(name, 0) or 0))
        for name, capacity in capacities.items()
    ]
    return Availability(event_id=event_id, mode=mode, pools=pools)


async def reserved_flat(db: AsyncSession, event_id: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(Booking.total_quantity), 0)).where(
            Booking.event_id == event_id,
            _active_clause(),
        )
    )
    return int(result.scalar_one())


async def reserved_by_category(db: AsyncSession, event_id: int) -> dict:
    result = await db.execute(
        select(BookingItem.category_name, func.sum(BookingItem.quantity))
        .join(Booking, Booking.id == BookingItem.booking_id)
        .where(
            Booking.event_id == event_id,
            Booking.pricing_mode == MODE_CATEGORIZED,
            _active_clause(),
        )
        .group_by(BookingItem.category_name)
    )
    return {name: int(total) for name, total in result.all()}


async def compute_availability(db: AsyncSession, event: Event) -> Availability:
    if event.has_ticket_categories:
        capacities = {c.name: c.total_seats for c in event.ticket_categories}
        reserved = await reserved_by_category(db, event.id)
        return build_availability(event.id, MODE_CATEGORIZED, capacities, reserved)

    reserved = await reserved_flat(db, event.id)
    return build_availability(event.id, MODE_FLAT, {None: event.total_seats}, {None: reserved})


async def count_active_bookings(db: AsyncSession, event_id: int) -> int:
    result = await db.execute(
        select(func.count(Booking.id)).where(Booking.event_id == event_id, _active_clause())
    )
    return int(result.scalar_one())
