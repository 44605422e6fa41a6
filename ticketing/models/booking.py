"""
Booking model representing a user's reservation for an event.

Key design decisions:
- `pricing_mode` tags the booking as flat or categorized; a flat booking keeps
  its quantity and price snapshot on the row, a categorized one in BookingItem
  rows. The tag is fixed at creation even if the event changes later
- Partial unique index on (user_id, event_id) over active rows: one active
  booking per user per event, while cancelled bookings stay for audit
- Unique `ticket_id` across all bookings ever created
- Bookings are never deleted; cancellation flips flags and the inventory
  ledger stops counting them
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
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ticketing.db.base import Base, TimestampMixin

MODE_FLAT = "flat"
MODE_CATEGORIZED = "categorized"

REFUND_NONE = "none"
REFUND_PENDING = "pending"
REFUND_PROCESSED = "processed"
REFUND_FAILED = "failed"

ACTIVE_BOOKING_CLAUSE = "NOT cancelled_by_user AND NOT cancelled_by_event"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)

    pricing_mode = Column(String(20), nullable=False)
    # Flat variant
    quantity = Column(Integer, nullable=True)
    unit_price = Column(Numeric(10, 2), nullable=True)

    total_amount = Column(Numeric(12, 2), nullable=False)
    total_quantity = Column(Integer, nullable=False)

    # Proof of purchase
    ticket_id = Column(String(64), nullable=False, unique=True)
    proof_payload = Column(Text, nullable=False)
    proof_image = Column(Text, nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    payment_reference = Column(String(255), nullable=True)

    # Cancellation
    cancelled_by_user = Column(Boolean, nullable=False, default=False)
    cancelled_by_event = Column(Boolean, nullable=False, default=False)
    cancellation_date = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)

    # Refund
    refund_status = Column(String(20), nullable=False, default=REFUND_NONE)
    refund_amount = Column(Numeric(12, 2), nullable=True)
    refund_percentage = Column(Integer, nullable=True)
    refund_reference = Column(String(255), nullable=True)
    refund_error = Column(String(500), nullable=True)

    # Relationships
    user = relationship("User", back_populates="bookings")
    event = relationship("Event", back_populates="bookings")
    items = relationship(
        "BookingItem",
        back_populates="booking",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BookingItem.id",
    )

    __table_args__ = (
        Index(
            "uq_bookings_active_user_event",
            "user_id",
            "event_id",
            unique=True,
            postgresql_where=text(ACTIVE_BOOKING_CLAUSE),
            sqlite_where=text(ACTIVE_BOOKING_CLAUSE),
        ),
        CheckConstraint("pricing_mode IN ('flat', 'categorized')", name="check_booking_pricing_mode"),
        CheckConstraint(
            "pricing_mode <> 'flat' OR (quantity > 0 AND unit_price IS NOT NULL)",
            name="check_flat_booking_snapshot",
        ),
        CheckConstraint("total_quantity > 0", name="check_booking_total_quantity_positive"),
        CheckConstraint(
            "refund_status IN ('none', 'pending', 'processed', 'failed')",
            name="check_booking_refund_status",
        ),
    )

    @property
    def is_active(self) -> bool:
        return not (self.cancelled_by_user or self.cancelled_by_event)

    @property
    def is_categorized(self) -> bool:
        return self.pricing_mode == MODE_CATEGORIZED

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, "
            f"mode={self.pricing_mode}, active={self.is_active})>"
        )


class BookingItem(Base):
    """One category line of a categorized booking, with its price snapshot."""

    __tablename__ = "booking_items"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    category_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    booking = relationship("Booking", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_booking_item_quantity_positive"),
    )
