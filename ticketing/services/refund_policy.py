"""
Time-tiered refund calculation.

Default tiers (days until the event starts):

    days >= 7        100%   full
    1 <= days < 7     50%   partial
    days < 1           0%   none

Boundaries are widened by EPSILON_DAYS (about 1.4 minutes) so a quote
computed "exactly 7 days" before the event is not pushed into the lower tier
by the time spent between reading the clock and comparing.

An event may carry a RefundPolicy override with its own three percentages;
the break points stay the same.

Everything here is pure: `now` is an argument so identical inputs always
produce identical quotes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

EPSILON_DAYS = 0.001
SECONDS_PER_DAY = 24 * 60 * 60

TIER_FULL = "full"
TIER_PARTIAL = "partial"
TIER_NONE = "none"

DEFAULT_PERCENTAGES = {TIER_FULL: 100, TIER_PARTIAL: 50, TIER_NONE: 0}

DEFAULT_DESCRIPTIONS = {
    TIER_FULL: "Full refund (7+ days before event)",
    TIER_PARTIAL: "Partial refund (1-7 days before event)",
    TIER_NONE: "No refund (less than 24 hours before event)",
}

CUSTOM_WINDOWS = {
    TIER_FULL: "7+ days before event",
    TIER_PARTIAL: "1-7 days before event",
    TIER_NONE: "less than 24 hours before event",
}


@dataclass(frozen=True)
class RefundPolicy:
    """Organizer-chosen percentages for the three fixed windows."""

    seven_days_or_more: int
    one_to_seven_days: int
    less_than_one_day: int
    description: Optional[str] = None

    def __post_init__(self):
        for value in (self.seven_days_or_more, self.one_to_seven_days, self.less_than_one_day):
            if value is None or not 0 <= value <= 100:
                raise ValueError("Refund percentages must be between 0 and 100")

    def percentage_for(self, tier: str) -> int:
        return {
            TIER_FULL: self.seven_days_or_more,
            TIER_PARTIAL: self.one_to_seven_days,
            TIER_NONE: self.less_than_one_day,
        }[tier]


@dataclass(frozen=True)
class RefundQuote:
    percentage: int
    amount: Decimal
    tier_label: str
    description: str
    days_until_event: float
    is_custom_policy: bool


def days_until(event_date: datetime, now: datetime) -> float:
    if event_date.tzinfo is None:
        event_date = event_date.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (event_date - now).total_seconds() / SECONDS_PER_DAY


def refund_tier(days: float) -> str:
    if days >= 7 - EPSILON_DAYS:
        return TIER_FULL
    if days >= 1 - EPSILON_DAYS:
        return TIER_PARTIAL
    return TIER_NONE


def round_amount(value: Decimal) -> Decimal:
    """Round half up to whole currency units."""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def calculate_refund(
    event_date: datetime,
    unit_price,
    quantity: int,
    policy: Optional[RefundPolicy] = None,
    *,
    now: Optional[datetime] = None,
) -> RefundQuote:
    if now is None:
        now = datetime.now(timezone.utc)

    days = days_until(event_date, now)
    tier = refund_tier(days)

    if policy is not None:
        percentage = policy.percentage_for(tier)
        description = policy.description or f"{percentage}% refund ({CUSTOM_WINDOWS[tier]})"
    else:
        percentage = DEFAULT_PERCENTAGES[tier]
        description = DEFAULT_DESCRIPTIONS[tier]

    total = Decimal(str(unit_price)) * quantity
    amount = round_amount(total * percentage / 100)

    return RefundQuote(
        percentage=percentage,
        amount=amount,
        tier_label=tier,
        description=description,
        days_until_event=round(days, 1),
        is_custom_policy=policy is not None,
    )


def quote_booking_refund(booking, event, *, now: Optional[datetime] = None) -> RefundQuote:
    """
    Refund quote for a booking, always from its price snapshot.

    Categorized bookings are quoted line by line and summed so each line is
    rounded the same way a flat booking of that line would be.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    policy = event.refund_policy

    if not booking.is_categorized:
        return calculate_refund(event.date, booking.unit_price, booking.quantity, policy, now=now)

    quotes = [
        calculate_refund(event.date, item.unit_price, item.quantity, policy, now=now)
        for item in booking.items
    ]
    if not quotes:
        return calculate_refund(event.date, 0, 0, policy, now=now)

    first = quotes[0]
    return RefundQuote(
        percentage=first.percentage,
        amount=sum((q.amount for q in quotes), Decimal("0")),
        tier_label=first.tier_label,
        description=first.description,
        days_until_event=first.days_until_event,
        is_custom_policy=first.is_custom_policy,
    )
