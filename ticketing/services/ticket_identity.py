"""
Ticket identity issuance.

Ticket ids are 128 random bits rendered as 32 lowercase hex characters.
The existence check below only makes a collision on insert unlikely; the
unique constraint on bookings.ticket_id is what actually guarantees
uniqueness, and the reservation coordinator retries its whole attempt when
that constraint fires.
"""

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.errors import Conflict
from ticketing.core.logging import get_logger
from ticketing.models.booking import Booking

logger = get_logger(__name__)

TICKET_ID_BYTES = 16


def generate_ticket_id() -> str:
    return secrets.token_hex(TICKET_ID_BYTES)


async def ticket_id_exists(db: AsyncSession, ticket_id: str) -> bool:
    # Cancelled bookings keep their ids, so no activity filter here
    result = await db.execute(select(Booking.id).where(Booking.ticket_id == ticket_id).limit(1))
    return result.scalar_one_or_none() is not None


async def issue_ticket_id(db: AsyncSession, max_attempts: int = 5) -> str:
    for attempt in range(1, max_attempts + 1):
        candidate = generate_ticket_id()
        if not await ticket_id_exists(db, candidate):
            return candidate
        logger.warning("ticket_id_collision", attempt=attempt)

    raise Conflict("Could not allocate a unique ticket id. Please try again.")
