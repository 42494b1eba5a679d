"""
Payment provider protocol.

The reconciler talks to the payment provider only through this interface, so
business logic can be exercised without network access and the provider can
be swapped without touching it.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol


CHECKOUT_COMPLETED_EVENTS = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})


@dataclass
class LineItem:
    """One purchased line; metadata merged from the price and its product."""
    price_metadata: Dict[str, str] = field(default_factory=dict)
    product_metadata: Dict[str, str] = field(default_factory=dict)
    quantity: int = 1


@dataclass
class CheckoutSession:
    """Provider-neutral view of a checkout session."""
    id: str
    payment_status: str  # paid|unpaid|no_payment_required
    metadata: Dict[str, str] = field(default_factory=dict)
    customer_email: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    # False when the payload did not carry line items at all (webhooks never do)
    line_items_loaded: bool = True

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


@dataclass
class PaymentEvent:
    """A verified webhook event."""
    id: str
    type: str
    session: Optional[CheckoutSession]
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_checkout_completed(self) -> bool:
        return self.type in CHECKOUT_COMPLETED_EVENTS


class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations must:
    - verify webhook authenticity before returning anything
      (raise `AuthenticationError` on a missing or invalid signature)
    - surface transport/API failures as `UpstreamError`
    """

    def parse_event(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        """
        Verify and decode a webhook delivery.

        Args:
            payload: Raw request body (exact bytes, signature covers them)
            signature: Value of the provider's signature header

        Returns:
            The verified event; `session` is set for checkout events

        Raises:
            AuthenticationError: Missing/invalid signature or undecodable body
        """
        ...

    def retrieve_session(self, session_id: str) -> CheckoutSession:
        """
        Fetch a checkout session with its line items.

        Raises:
            NotFoundError: Unknown session id
            UpstreamError: Provider unreachable or erroring
        """
        ...
