"""
Event model and its optional ticket categories.

Key design decisions:
- Remaining capacity is NOT stored; it is derived from active bookings by the
  inventory ledger, so cancellations release seats without a counter update
- `version` is bumped by every reservation transaction; the row write lock
  this takes serializes concurrent reservations for the same event
- An event is either flat (price + total_seats) or categorized
  (has_ticket_categories + 1..5 TicketCategory rows)
- Refund override columns are all-or-nothing; when unset the default tiers apply
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin
from ticketing.services.refund_policy import RefundPolicy


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(255), nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    total_seats = Column(Integer, nullable=False)
    has_ticket_categories = Column(Boolean, nullable=False, default=False)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    cancelled = Column(Boolean, nullable=False, default=False)
    cancellation_reason = Column(String(500), nullable=True)

    # Custom refund tiers (percentages), overriding the default 100/50/0
    refund_full_percentage = Column(Integer, nullable=True)
    refund_partial_percentage = Column(Integer, nullable=True)
    refund_none_percentage = Column(Integer, nullable=True)
    refund_policy_description = Column(String(255), nullable=True)

    # Serialization point for reservations
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    organizer = relationship("User", back_populates="events")
    ticket_categories = relationship(
        "TicketCategory",
        back_populates="event",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="TicketCategory.id",
    )
    bookings = relationship("Booking", back_populates="event")

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="check_event_total_seats_positive"),
        CheckConstraint("price >= 0", name="check_event_price_non_negative"),
        Index("ix_events_date", "date"),
    )

    @property
    def refund_policy(self):
        if self.refund_full_percentage is None:
            return None
        return RefundPolicy(
            seven_days_or_more=self.refund_full_percentage,
            one_to_seven_days=self.refund_partial_percentage,
            less_than_one_day=self.refund_none_percentage,
            description=self.refund_policy_description,
        )

    def category(self, name: str):
        for category in self.ticket_categories:
            if category.name == name:
                return category
        return None

    def __repr__(self) -> str:
        mode = "categorized" if self.has_ticket_categories else "flat"
        return f"<Event(id={self.id}, title={self.title}, mode={mode}, seats={self.total_seats})>"


class TicketCategory(Base):
    __tablename__ = "ticket_categories"

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    total_seats = Column(Integer, nullable=False)

    event = relationship("Event", back_populates="ticket_categories")

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_ticket_category_event_name"),
        CheckConstraint("total_seats > 0", name="check_category_total_seats_positive"),
        CheckConstraint("price >= 0", name="check_category_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<TicketCategory(event={self.event_id}, name={self.name}, seats={self.total_seats})>"
