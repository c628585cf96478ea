# backend/stagebook/payments.py
"""
Payment gateway adapter.

A gateway "order" is a Stripe PaymentIntent; its id is what bookings store as
gateway_order_id and what webhook confirmations are keyed on. Signature
checking is delegated to stripe.Webhook.construct_event.
"""
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from stagebook import config
from stagebook.errors import PaymentVerificationFailed

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))


class PaymentGateway:
    def __init__(self, api_key: str, webhook_secret: str, currency: str = "inr"):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    async def create_order(self, amount: Decimal, receipt: str, metadata: Optional[dict] = None) -> dict[str, Any]:
        intent = await run_in_threadpool(
            stripe.PaymentIntent.create,
            api_key=self.api_key,
            amount=to_minor_units(amount),
            currency=self.currency,
            description=receipt,
            metadata={"receipt": receipt, **(metadata or {})},
            automatic_payment_methods={"enabled": True},
        )
        logger.info("created payment intent %s for %s (%s)", intent.id, receipt, amount)
        return {
            "id": intent.id,
            "amount": from_minor_units(intent.amount),
            "currency": intent.currency,
            "client_secret": getattr(intent, "client_secret", None),
        }

    async def cancel_order(self, order_id: str) -> None:
        await run_in_threadpool(stripe.PaymentIntent.cancel, order_id, api_key=self.api_key)
        logger.info("cancelled payment intent %s", order_id)

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        if not signature:
            raise PaymentVerificationFailed("Missing gateway signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("rejected gateway webhook: %s", e)
            raise PaymentVerificationFailed(f"Gateway signature verification failed: {e}")
        # construct_event only vouches for the payload; hand back plain data.
        return json.loads(payload)


_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            api_key=config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            currency=config.PAYMENT_CURRENCY,
        )
    return _gateway
