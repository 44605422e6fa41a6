"""
Tests for single-use ticket check-in.
"""

import asyncio

import pytest
import pytest_asyncio

from ticketing.core.errors import (
    BookingError,
    EventMismatch,
    MalformedProof,
    NotFound,
    TicketAlreadyUsed,
    Unauthorized,
)
from ticketing.models.booking import Booking
from ticketing.services import proof_codec
from ticketing.services.cancellation_service import cancel_booking
from ticketing.services.reservation_service import FlatReservationRequest, create_reservation
from ticketing.services.verification_service import VerificationResult, verify_ticket


@pytest_asyncio.fixture
async def booking(db_session, test_event, test_user) -> Booking:
    return await create_reservation(db_session, test_event.id, test_user.id, FlatReservationRequest(quantity=2))


@pytest.mark.asyncio
async def test_verify_twice_succeeds_once(session_factory, booking, organizer):
    payload, event_id, booking_id = booking.proof_payload, booking.event_id, booking.id

    async with session_factory() as session:
        result = await verify_ticket(session, payload, event_id, verifier=organizer)
    assert result.booking.verified is True
    first_verified_at = result.booking.verified_at

    async with session_factory() as session:
        with pytest.raises(TicketAlreadyUsed):
            await verify_ticket(session, payload, event_id, verifier=organizer)

    async with session_factory() as session:
        stored = await session.get(Booking, booking_id)
    assert stored.verified is True
    assert stored.verified_at == first_verified_at


@pytest.mark.asyncio
async def test_concurrent_scans_admit_once(session_factory, booking):
    payload, event_id = booking.proof_payload, booking.event_id

    async def scan():
        async with session_factory() as session:
            try:
                return await verify_ticket(session, payload, event_id)
            except BookingError as e:
                return e

    results = await asyncio.gather(*[scan() for _ in range(5)])
    assert sum(isinstance(r, VerificationResult) for r in results) == 1
    assert sum(isinstance(r, TicketAlreadyUsed) for r in results) == 4


@pytest.mark.asyncio
async def test_payload_event_must_match_booking(session_factory, booking):
    forged = proof_codec.encode_payload(booking.ticket_id, booking.event_id + 1)
    async with session_factory() as session:
        with pytest.raises(EventMismatch):
            await verify_ticket(session, forged, booking.event_id)


@pytest.mark.asyncio
async def test_expected_event_must_match_booking(session_factory, booking):
    async with session_factory() as session:
        with pytest.raises(EventMismatch):
            await verify_ticket(session, booking.proof_payload, booking.event_id + 1)


@pytest.mark.asyncio
async def test_unknown_ticket(session_factory, test_event):
    payload = proof_codec.encode_payload("0" * 32, test_event.id)
    async with session_factory() as session:
        with pytest.raises(NotFound):
            await verify_ticket(session, payload, test_event.id)


@pytest.mark.asyncio
async def test_malformed_scan(session_factory, test_event):
    async with session_factory() as session:
        with pytest.raises(MalformedProof):
            await verify_ticket(session, "{broken", test_event.id)


@pytest.mark.asyncio
async def test_only_organizer_or_admin_may_verify(session_factory, booking, other_user, admin):
    async with session_factory() as session:
        with pytest.raises(Unauthorized):
            await verify_ticket(session, booking.proof_payload, booking.event_id, verifier=other_user)

    async with session_factory() as session:
        result = await verify_ticket(session, booking.proof_payload, booking.event_id, verifier=admin)
    assert result.booking.id == booking.id


@pytest.mark.asyncio
async def test_cancellation_between_read_and_update_is_not_found(
    session_factory, booking, organizer, payment_gateway
):
    payload, event_id, booking_id, owner_id = (
        booking.proof_payload, booking.event_id, booking.id, booking.user_id
    )

    async with session_factory() as session:
        original_get = session.get

        # The organizer check loads the event after the booking was read
        async def get_after_cancellation(*args, **kwargs):
            async with session_factory() as other:
                await cancel_booking(other, booking_id, owner_id, payment_gateway)
            return await original_get(*args, **kwargs)

        session.get = get_after_cancellation
        with pytest.raises(NotFound):
            await verify_ticket(session, payload, event_id, verifier=organizer)

    async with session_factory() as session:
        stored = await session.get(Booking, booking_id)
    assert stored.verified is False
    assert stored.cancelled_by_user is True
