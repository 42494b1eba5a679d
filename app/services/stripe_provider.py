"""
Stripe payment provider.

Implements `PaymentProvider` with the stripe library: webhook signature
verification via `stripe.Webhook.construct_event` and session lookups with
line items expanded down to the product so per-item metadata is available.
Calls are synchronous; async callers run them in a worker thread.
"""
import json
from typing import Any, Dict, List, Optional

import stripe

from app.core.config import settings
from app.core.exceptions import AuthenticationError, NotFoundError, UpstreamError
from app.core.logger import logger
from app.services.payment_provider import CheckoutSession, LineItem, PaymentEvent

SESSION_EXPAND = ["line_items.data.price.product"]


def _str_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def session_from_dict(data: Dict[str, Any]) -> CheckoutSession:
    """Map a Stripe checkout session payload to `CheckoutSession`."""
    items: List[LineItem] = []
    raw_items = data.get("line_items")
    if isinstance(raw_items, dict):
        for item in raw_items.get("data") or []:
            price = item.get("price") or {}
            product = price.get("product") if isinstance(price, dict) else None
            items.append(
                LineItem(
                    price_metadata=_str_map(price.get("metadata") if isinstance(price, dict) else None),
                    product_metadata=_str_map(product.get("metadata") if isinstance(product, dict) else None),
                    quantity=int(item.get("quantity") or 1),
                )
            )

    email = data.get("customer_email")
    if not email:
        email = (data.get("customer_details") or {}).get("email")

    return CheckoutSession(
        id=str(data.get("id") or ""),
        payment_status=str(data.get("payment_status") or "unpaid"),
        metadata=_str_map(data.get("metadata")),
        customer_email=email,
        amount_total=data.get("amount_total"),
        currency=data.get("currency"),
        line_items=items,
        line_items_loaded=isinstance(raw_items, dict),
    )


class StripePaymentProvider:
    """Stripe implementation of the PaymentProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        self.secret_key = secret_key or (
            settings.STRIPE_SECRET_KEY.get_secret_value() if settings.STRIPE_SECRET_KEY else None
        )
        self.webhook_secret = webhook_secret or (
            settings.STRIPE_WEBHOOK_SECRET.get_secret_value() if settings.STRIPE_WEBHOOK_SECRET else None
        )
        if not self.secret_key:
            raise UpstreamError("Payment provider is not configured", code="provider_not_configured")

        # Per-instance client; module-level stripe settings are left untouched
        self.client = client or stripe.StripeClient(
            self.secret_key,
            max_network_retries=max_retries if max_retries is not None else settings.PAYMENT_PROVIDER_MAX_RETRIES,
            http_client=stripe.RequestsClient(timeout=timeout_seconds or settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS),
        )

    def parse_event(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        if not self.webhook_secret:
            raise UpstreamError("Webhook secret is not configured", code="provider_not_configured")
        if not signature:
            raise AuthenticationError("Missing payment signature", code="missing_signature")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise AuthenticationError("Invalid webhook payload", code="invalid_payload") from e
        except stripe.SignatureVerificationError as e:
            raise AuthenticationError("Invalid payment signature", code="invalid_signature") from e

        raw = json.loads(payload)
        obj = (raw.get("data") or {}).get("object") or {}
        session = session_from_dict(obj) if obj.get("object") == "checkout.session" else None
        return PaymentEvent(id=str(event["id"]), type=str(event["type"]), session=session, raw=raw)

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        try:
            obj = self.client.checkout.sessions.retrieve(session_id, params={"expand": SESSION_EXPAND})
        except stripe.InvalidRequestError as e:
            if getattr(e, "http_status", None) == 404:
                raise NotFoundError("Payment session not found", details={"session_id": session_id}) from e
            raise UpstreamError("Payment provider rejected the request") from e
        except stripe.StripeError as e:
            logger.warning("Stripe session lookup failed for {}: {}", session_id, e)
            raise UpstreamError("Payment provider unavailable") from e
        return session_from_dict(json.loads(str(obj)))


__all__ = ["StripePaymentProvider", "session_from_dict", "SESSION_EXPAND"]
