"""
Tests for the cancellation workflow and refund bookkeeping.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ticketing.core.errors import AlreadyCancelled, EventClosed, NotFound, Unauthorized
from ticketing.models.booking import Booking
from ticketing.services.cancellation_service import (
    cancel_booking,
    cancel_bookings_for_event,
    get_refund_quote,
    get_refund_status,
)
from ticketing.services.inventory_ledger import compute_availability
from ticketing.services.reservation_service import (
    CategorizedReservationRequest,
    CategoryLine,
    FlatReservationRequest,
    create_reservation,
    load_event,
)
from tests.conftest import create_event, create_user


async def reserve(session_factory, event_id, user_id, quantity=2, payment_reference="pi_test"):
    async with session_factory() as session:
        return await create_reservation(
            session, event_id, user_id, FlatReservationRequest(quantity=quantity),
            payment_reference=payment_reference,
        )


async def reload(session_factory, booking_id) -> Booking:
    async with session_factory() as session:
        return await session.get(Booking, booking_id)


@pytest.mark.asyncio
async def test_gateway_failure_still_cancels(session_factory, test_event, test_user, payment_gateway):
    booking = await reserve(session_factory, test_event.id, test_user.id)
    payment_gateway.fail = True

    async with session_factory() as session:
        result = await cancel_booking(session, booking.id, test_user.id, payment_gateway)
    assert result.booking.cancelled_by_user is True
    assert result.booking.refund_status == "failed"
    assert "card_declined" in result.booking.refund_error

    async with session_factory() as session:
        event = await load_event(session, test_event.id)
        view = await compute_availability(session, event)
    assert view.pool().reserved == 0


@pytest.mark.asyncio
async def test_successful_refund_recorded(session_factory, test_event, test_user, payment_gateway):
    booking = await reserve(session_factory, test_event.id, test_user.id, quantity=3)

    async with session_factory() as session:
        result = await cancel_booking(session, booking.id, test_user.id, payment_gateway, reason="Ill")

    stored = await reload(session_factory, booking.id)
    assert stored.refund_status == "processed"
    assert stored.refund_reference == "re_1"
    assert stored.refund_amount == Decimal("150")
    assert stored.refund_percentage == 100
    assert stored.cancellation_reason == "Ill"
    assert stored.cancellation_date is not None
    assert result.quote.tier_label == "full"
    assert payment_gateway.refunds == [("pi_test", Decimal("150"))]


@pytest.mark.asyncio
async def test_zero_refund_skips_gateway(session_factory, db_session, organizer, test_user, payment_gateway):
    event = await create_event(db_session, organizer, days_ahead=0.5)
    booking = await reserve(session_factory, event.id, test_user.id)

    async with session_factory() as session:
        result = await cancel_booking(session, booking.id, test_user.id, payment_gateway)
    assert result.quote.percentage == 0
    assert result.booking.refund_status == "none"
    assert result.booking.refund_amount == Decimal("0")
    assert payment_gateway.refunds == []


@pytest.mark.asyncio
async def test_custom_policy_applies(session_factory, db_session, organizer, test_user, payment_gateway):
    event = await create_event(db_session, organizer, days_ahead=3, price="40.00", refund_policy=(90, 75, 0))
    booking = await reserve(session_factory, event.id, test_user.id, quantity=2)

    async with session_factory() as session:
        quote = await get_refund_quote(session, booking.id, test_user.id)
    assert quote.percentage == 75
    assert quote.amount == Decimal("60")
    assert quote.is_custom_policy is True


@pytest.mark.asyncio
async def test_categorized_refund_uses_item_snapshot(
    session_factory, db_session, categorized_event, test_user, payment_gateway
):
    async with session_factory() as session:
        booking = await create_reservation(
            session,
            categorized_event.id,
            test_user.id,
            CategorizedReservationRequest(items=[CategoryLine("VIP", 1), CategoryLine("General", 1)]),
            payment_reference="pi_tiered",
        )

    # Later price changes never affect the refund
    categorized_event.ticket_categories[0].price = Decimal("999.00")
    await db_session.commit()

    async with session_factory() as session:
        result = await cancel_booking(session, booking.id, test_user.id, payment_gateway)
    assert result.quote.amount == Decimal("200")
    assert payment_gateway.refunds == [("pi_tiered", Decimal("200"))]


@pytest.mark.asyncio
async def test_cancel_checks(session_factory, test_event, test_user, other_user, payment_gateway):
    booking = await reserve(session_factory, test_event.id, test_user.id)

    async with session_factory() as session:
        with pytest.raises(NotFound):
            await cancel_booking(session, 99999, test_user.id, payment_gateway)
    async with session_factory() as session:
        with pytest.raises(Unauthorized):
            await cancel_booking(session, booking.id, other_user.id, payment_gateway)

    async with session_factory() as session:
        await cancel_booking(session, booking.id, test_user.id, payment_gateway)
    async with session_factory() as session:
        with pytest.raises(AlreadyCancelled):
            await cancel_booking(session, booking.id, test_user.id, payment_gateway)


@pytest.mark.asyncio
async def test_cannot_cancel_after_event(session_factory, test_event, test_user, payment_gateway):
    booking = await reserve(session_factory, test_event.id, test_user.id)
    after_event = datetime.now(timezone.utc) + timedelta(days=31)

    async with session_factory() as session:
        with pytest.raises(EventClosed):
            await cancel_booking(session, booking.id, test_user.id, payment_gateway, now=after_event)

    stored = await reload(session_factory, booking.id)
    assert stored.is_active


@pytest.mark.asyncio
async def test_bulk_cancellation_marks_pending_without_gateway(
    session_factory, db_session, test_event, organizer, payment_gateway
):
    event_id = test_event.id
    buyers = [await create_user(db_session, f"buyer{i}") for i in range(4)]
    bookings = [await reserve(session_factory, event_id, b.id, quantity=i + 1) for i, b in enumerate(buyers)]

    # One booking was already cancelled by its owner and must be left alone
    async with session_factory() as session:
        await cancel_booking(session, bookings[0].id, buyers[0].id, payment_gateway)
    payment_gateway.refunds.clear()

    async with session_factory() as session:
        result = await cancel_bookings_for_event(session, event_id, organizer, reason="Storm")
    assert result.bookings_cancelled == 3
    assert sorted(result.recipients) == ["buyer1@example.com", "buyer2@example.com", "buyer3@example.com"]
    assert payment_gateway.refunds == []

    for booking in bookings[1:]:
        stored = await reload(session_factory, booking.id)
        assert stored.cancelled_by_event is True
        assert stored.refund_status == "pending"
        assert stored.refund_amount == stored.total_amount
        assert stored.refund_percentage == 100

    untouched = await reload(session_factory, bookings[0].id)
    assert untouched.cancelled_by_event is False
    assert untouched.refund_status == "processed"

    async with session_factory() as session:
        event = await load_event(session, event_id)
        assert event.cancelled is True
        assert (await compute_availability(session, event)).total_reserved == 0


@pytest.mark.asyncio
async def test_bulk_cancellation_authorization(session_factory, test_event, other_user, admin):
    async with session_factory() as session:
        with pytest.raises(Unauthorized):
            await cancel_bookings_for_event(session, test_event.id, other_user)

    async with session_factory() as session:
        result = await cancel_bookings_for_event(session, test_event.id, admin)
    assert result.bookings_cancelled == 0


@pytest.mark.asyncio
async def test_refund_status_keeps_stored_state_when_gateway_down(
    session_factory, test_event, test_user, payment_gateway
):
    booking = await reserve(session_factory, test_event.id, test_user.id)
    async with session_factory() as session:
        await cancel_booking(session, booking.id, test_user.id, payment_gateway)

    payment_gateway.fail = True
    async with session_factory() as session:
        result = await get_refund_status(session, booking.id, test_user.id, payment_gateway)
    assert result.gateway_status is None
    assert result.booking.refund_status == "processed"


@pytest.mark.asyncio
async def test_unexpected_gateway_error_records_failed(
    session_factory, test_event, test_user, payment_gateway, monkeypatch
):
    booking = await reserve(session_factory, test_event.id, test_user.id)

    async def broken_refund(payment_reference, amount, reason="requested_by_customer"):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(payment_gateway, "issue_refund", broken_refund)

    async with session_factory() as session:
        result = await cancel_booking(session, booking.id, test_user.id, payment_gateway)
    assert result.booking.refund_status == "failed"
    assert "connection reset" in result.booking.refund_error

    stored = await reload(session_factory, booking.id)
    assert stored.cancelled_by_user is True
    assert stored.refund_status == "failed"


@pytest.mark.asyncio
async def test_reconciliation_never_moves_processed_back_to_pending(
    session_factory, test_event, test_user, payment_gateway
):
    booking = await reserve(session_factory, test_event.id, test_user.id)
    async with session_factory() as session:
        await cancel_booking(session, booking.id, test_user.id, payment_gateway)

    payment_gateway.refund_status = "pending"
    async with session_factory() as session:
        result = await get_refund_status(session, booking.id, test_user.id, payment_gateway)
    assert result.gateway_status == "pending"
    assert result.booking.refund_status == "processed"

    payment_gateway.refund_status = "failed"
    async with session_factory() as session:
        result = await get_refund_status(session, booking.id, test_user.id, payment_gateway)
    assert result.booking.refund_status == "failed"
    assert (await reload(session_factory, booking.id)).refund_status == "failed"
