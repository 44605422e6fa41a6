"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .payment_gateway import PaymentGateway, RefundReceipt, get_payment_gateway
from .notifications import Notification, Notifier, deliver, get_notifier

__all__ = [
    "PaymentGateway", "RefundReceipt", "get_payment_gateway",
    "Notification", "Notifier", "deliver", "get_notifier",
]
