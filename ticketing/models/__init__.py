from ticketing.models.user import User
from ticketing.models.event import Event, TicketCategory
from ticketing.models.booking import Booking, BookingItem

__all__ = ["User", "Event", "TicketCategory", "Booking", "BookingItem"]
