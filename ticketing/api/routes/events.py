"""
Event endpoints: catalog CRUD, live availability and bulk cancellation.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ticketing.core.logging import get_logger
from ticketing.core.security import get_current_user
from ticketing.db.session import get_db
from ticketing.infrastructure.notifications import Notifier, deliver, event_cancelled, get_notifier
from ticketing.models.user import User
from ticketing.schemas.event import (
    AvailabilityResponse,
    EventCancelRequest,
    EventCancelResponse,
    EventCreate,
    EventListResponse,
    EventResponse,
    EventUpdate,
)
from ticketing.services.auth_service import ensure_can_create_events
from ticketing.services.cache_service import get_cached_events, invalidate_event_cache, set_cached_events
from ticketing.services.cancellation_service import cancel_bookings_for_event
from ticketing.services.event_service import create_event, get_event, list_events, update_event
from ticketing.services.inventory_ledger import compute_availability

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create a flat or categorized event. Organizers and admins only."""
    ensure_can_create_events(user)
    event = await create_event(db, event_data, user.id)
    await invalidate_event_cache()
    return EventResponse.model_validate(event)


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """
    List events with pagination.
    Results are cached in Redis; availability is not part of the listing.
    """
    cached = await get_cached_events(page, page_size, upcoming_only)
    if cached:
        logger.info("events_list_cache_hit", page=page)
        cached["cached"] = True
        return EventListResponse(**cached)

    events, total = await list_events(db, page, page_size, upcoming_only)

    response_data = {
        "events": [EventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_events(page, page_size, upcoming_only, response_data)

    return EventListResponse(**response_data)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(event_id: int, db: AsyncSession = Depends(get_db)):
    event = await get_event(db, event_id)
    return EventResponse.model_validate(event)


@router.patch("/{event_id}", response_model=EventResponse)
async def update_event_endpoint(
    event_id: int,
    event_data: EventUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit an event. Price changes never touch existing bookings."""
    event = await update_event(db, event_id, event_data, user)
    await invalidate_event_cache()
    return EventResponse.model_validate(event)


@router.get("/{event_id}/availability", response_model=AvailabilityResponse)
async def get_availability_endpoint(event_id: int, db: AsyncSession = Depends(get_db)):
    """Capacity, reserved and available seats per pool, derived live from bookings."""
    event = await get_event(db, event_id)
    availability = await compute_availability(db, event)
    return AvailabilityResponse.from_availability(availability)


@router.post("/{event_id}/cancel", response_model=EventCancelResponse)
async def cancel_event_endpoint(
    event_id: int,
    background_tasks: BackgroundTasks,
    cancel_data: Optional[EventCancelRequest] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Cancel the event and all of its active bookings.

    Refunds are marked pending for out-of-band processing; no payment gateway
    call is made from this request.
    """
    reason = cancel_data.reason if cancel_data else None
    event = await get_event(db, event_id)
    title = event.title

    result = await cancel_bookings_for_event(db, event_id, user, reason=reason)
    await invalidate_event_cache()

    for email in result.recipients:
        background_tasks.add_task(deliver, notifier, event_cancelled(email, title, reason))

    return EventCancelResponse(
        message="Event cancelled",
        event_id=result.event_id,
        bookings_cancelled=result.bookings_cancelled,
    )
