"""
Payment gateway adapters.

The engine never handles payment instruments; it only asks the gateway to
refund an amount against a payment reference captured at checkout, and to
report the status of a refund it issued earlier.

Implementations:
- StripePaymentGateway: Stripe refunds keyed by payment intent id
- DisabledPaymentGateway: every call fails with ExternalServiceError, so
  cancellations still go through and refunds are left for manual review
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import stripe

from ticketing.core.config import get_settings
from ticketing.core.errors import ExternalServiceError
from ticketing.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

# Gateway status vocabulary mapped onto bookings.refund_status
GATEWAY_STATUS_MAP = {
    "succeeded": "processed",
    "pending": "pending",
    "requires_action": "pending",
    "failed": "failed",
    "canceled": "failed",
}


@dataclass(frozen=True)
class RefundReceipt:
    reference: str
    amount: Decimal
    status: str


class PaymentGateway(ABC):
    """Interface for refund issuance and refund status lookups."""

    @abstractmethod
    async def issue_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str = "requested_by_customer",
    ) -> RefundReceipt:
        """
        Refund `amount` (major currency units) against a payment.

        Raises:
            ExternalServiceError: the gateway refused or could not be reached
        """

    @abstractmethod
    async def get_refund_status(self, refund_reference: str) -> str:
        """Return the gateway's status string for a refund it issued."""


class StripePaymentGateway(PaymentGateway):
    """Stripe refunds. The SDK is synchronous, so calls run in a worker thread."""

    def __init__(self, api_key: str, minor_units: int = 100):
        self.api_key = api_key
        self.minor_units = minor_units

    async def issue_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str = "requested_by_customer",
    ) -> RefundReceipt:
        if not payment_reference:
            raise ExternalServiceError("Payment reference is required for refund")

        params = {
            "payment_intent": payment_reference,
            "reason": reason,
            "amount": int(Decimal(amount) * self.minor_units),
        }
        logger.info("stripe_refund_requested", payment_intent=payment_reference, amount=params["amount"])

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error("stripe_refund_error", payment_intent=payment_reference, error=str(e))
            raise ExternalServiceError(f"Refund failed: {e.user_message or str(e)}")

        logger.info("stripe_refund_created", refund_id=refund.id, status=refund.status)
        return RefundReceipt(
            reference=refund.id,
            amount=Decimal(refund.amount) / self.minor_units,
            status=refund.status,
        )

    async def get_refund_status(self, refund_reference: str) -> str:
        try:
            refund = await asyncio.to_thread(stripe.Refund.retrieve, refund_reference, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error("stripe_refund_status_error", refund_id=refund_reference, error=str(e))
            raise ExternalServiceError(f"Could not retrieve refund status: {e.user_message or str(e)}")
        return refund.status


class DisabledPaymentGateway(PaymentGateway):
    async def issue_refund(
        self,
        payment_reference: str,
        amount: Decimal,
        reason: str = "requested_by_customer",
    ) -> RefundReceipt:
        raise ExternalServiceError("Payment gateway is not configured")

    async def get_refund_status(self, refund_reference: str) -> str:
        raise ExternalServiceError("Payment gateway is not configured")


def map_gateway_status(gateway_status: Optional[str]) -> Optional[str]:
    if gateway_status is None:
        return None
    return GATEWAY_STATUS_MAP.get(gateway_status)


_gateway: Optional[PaymentGateway] = None


def build_payment_gateway() -> PaymentGateway:
    if settings.PAYMENT_GATEWAY == "stripe" and settings.STRIPE_SECRET_KEY:
        return StripePaymentGateway(settings.STRIPE_SECRET_KEY, settings.REFUND_CURRENCY_MINOR_UNITS)
    logger.warning("payment_gateway_disabled", configured=settings.PAYMENT_GATEWAY)
    return DisabledPaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the configured gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway
