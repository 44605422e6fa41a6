"""
Verification gate: single-use check-in of a scanned ticket.

    Unverified --verify--> Verified (terminal)

The transition is one conditional UPDATE guarded by `verified = false`, so
two scans of the same ticket racing each other cannot both succeed: the
loser's UPDATE matches no row and it gets TicketAlreadyUsed. The read before
the UPDATE only exists to give precise errors.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.errors import (
    BookingError,
    EventMismatch,
    MalformedProof,
    NotFound,
    TicketAlreadyUsed,
)
from ticketing.core.logging import get_logger
from ticketing.core.metrics import record_verification
from ticketing.models.booking import Booking
from ticketing.models.event import Event
from ticketing.models.user import User
from ticketing.services import proof_codec
from ticketing.services.auth_service import ensure_can_manage_event

logger = get_logger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    booking: Booking
    verified_at: datetime


def _outcome(exc: BookingError) -> str:
    if isinstance(exc, TicketAlreadyUsed):
        return "already_used"
    if isinstance(exc, EventMismatch):
        return "mismatch"
    if isinstance(exc, MalformedProof):
        return "malformed"
    if isinstance(exc, NotFound):
        return "not_found"
    return "rejected"


async def verify_ticket(
    db: AsyncSession,
    scanned_payload: str,
    expected_event_id: int,
    *,
    verifier: Optional[User] = None,
) -> VerificationResult:
    try:
        result = await _verify(db, scanned_payload, expected_event_id, verifier)
    except BookingError as exc:
        record_verification(_outcome(exc))
        logger.warning(
            "ticket_verification_failed",
            expected_event_id=expected_event_id,
            reason=exc.code,
        )
        raise

    record_verification("verified")
    return result


async def _verify(
    db: AsyncSession,
    scanned_payload: str,
    expected_event_id: int,
    verifier: Optional[User],
) -> VerificationResult:
    proof = proof_codec.decode(scanned_payload)

    result = await db.execute(select(Booking).where(Booking.ticket_id == proof.ticket_id))
    booking = result.scalar_one_or_none()
    if not booking or not booking.is_active:
        raise NotFound("Invalid ticket or booking cancelled")

    # Payload tampering and operator mis-selection are checked independently
    if booking.event_id != proof.event_id or booking.event_id != expected_event_id:
        raise EventMismatch()

    if verifier is not None and not verifier.is_admin:
        event = await db.get(Event, booking.event_id)
        ensure_can_manage_event(verifier, event.organizer_id if event else None, "verify tickets")

    if booking.verified:
        raise TicketAlreadyUsed()

    verified_at = datetime.now(timezone.utc)
    update_result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.verified.is_(False),
            Booking.cancelled_by_user.is_(False),
            Booking.cancelled_by_event.is_(False),
        )
        .values(verified=True, verified_at=verified_at)
        .execution_options(synchronize_session=False)
    )
    if update_result.rowcount == 0:
        # Lost a race: another scan verified it or the booking was cancelled
        booking_id = booking.id
        await db.rollback()
        cancelled = await db.scalar(
            select(or_(Booking.cancelled_by_user, Booking.cancelled_by_event)).where(Booking.id == booking_id)
        )
        if cancelled:
            raise NotFound("Invalid ticket or booking cancelled")
        raise TicketAlreadyUsed()

    await db.commit()
    await db.refresh(booking)

    logger.info(
        "ticket_verified",
        booking_id=booking.id,
        ticket_id=booking.ticket_id,
        event_id=booking.event_id,
    )
    return VerificationResult(booking=booking, verified_at=verified_at)
