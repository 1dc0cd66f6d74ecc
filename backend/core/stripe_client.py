import asyncio
import json
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

import stripe
import structlog

from core.config import settings
from core.errors import SignatureVerificationError

logger = structlog.get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass
class PaymentEvent:
    """The parts of a verified Stripe event the order flow cares about."""
    type: str
    session_id: Optional[str] = None
    lane_number: Optional[str] = None
    customer_details: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class StripeGateway:
    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        *,
        currency: str = "usd",
        success_url: str = "",
        cancel_url: str = "",
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.success_url = success_url
        self.cancel_url = cancel_url

    async def create_checkout_session(self, items: Sequence[Any], lane: Optional[str]) -> str:
        """
        Create a hosted checkout page and return its URL.

        Args:
            items: line items with name, price (major units) and quantity
            lane: lane number echoed back on the completed-session webhook
        """
        line_items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": it.name},
                    "unit_amount": int(round(float(it.price or 0) * 100)),
                },
                "quantity": int(it.quantity),
            }
            for it in items
        ]
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self.api_key,
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            metadata={"lane_number": lane},
        )
        logger.info("Checkout session created", session_id=session.id, lane_number=lane)
        return session.url

    def construct_event(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        if not signature:
            raise SignatureVerificationError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise SignatureVerificationError(str(e)) from e

        # Verified, so the raw body is trustworthy and already plain JSON
        body = json.loads(payload)
        obj = (body.get("data") or {}).get("object") or {}
        event = PaymentEvent(type=body.get("type", ""), raw=body)
        if event.type == CHECKOUT_COMPLETED:
            event.session_id = obj.get("id")
            event.lane_number = (obj.get("metadata") or {}).get("lane_number")
            event.customer_details = obj.get("customer_details")
        return event

    async def list_line_items(self, session_id: str) -> List[Dict[str, Any]]:
        line_items = await asyncio.to_thread(
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=100,
            api_key=self.api_key,
        )
        return [{"name": li.description, "quantity": int(li.quantity or 0)} for li in line_items.data]


@lru_cache
def get_payment_gateway() -> StripeGateway:
    return StripeGateway(
        settings.stripe_secret_key,
        settings.stripe_webhook_secret,
        currency=settings.checkout_currency,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
