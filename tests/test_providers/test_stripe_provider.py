# tests/test_providers/test_stripe_provider.py

import hashlib
import hmac
import json
import time

import pytest
import stripe

from app.core.exceptions import AuthenticationError, NotFoundError, UpstreamError
from app.services.stripe_provider import StripePaymentProvider, session_from_dict

SECRET = "whsec_unit"


def _signed(payload: bytes, secret: str = SECRET, ts: int = None) -> str:
    ts = int(time.time()) if ts is None else ts
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def _event(obj: dict, event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps({
        "id": "evt_123",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()


@pytest.fixture()
def stripe_provider() -> StripePaymentProvider:
    return StripePaymentProvider("sk_test_unit", SECRET)


def test_parse_event_with_valid_signature(stripe_provider):
    payload = _event({
        "id": "cs_test_1",
        "object": "checkout.session",
        "payment_status": "paid",
        "metadata": {"user_id": "U1", "collection_ids": "[\"C1\",\"C2\"]"},
        "customer_details": {"email": "viewer@example.com"},
        "amount_total": 4498,
        "currency": "usd",
    })

    event = stripe_provider.parse_event(payload, _signed(payload))

    assert event.id == "evt_123" and event.is_checkout_completed
    assert event.session.id == "cs_test_1" and event.session.is_paid
    assert event.session.metadata["user_id"] == "U1"
    assert event.session.customer_email == "viewer@example.com"
    # Webhook payloads never carry line items
    assert event.session.line_items_loaded is False


def test_parse_event_rejects_forged_signature(stripe_provider):
    payload = _event({"id": "cs_test_1", "object": "checkout.session"})
    with pytest.raises(AuthenticationError) as ei:
        stripe_provider.parse_event(payload, _signed(payload, secret="whsec_other"))
    assert ei.value.code == "invalid_signature"


def test_parse_event_rejects_stale_timestamp(stripe_provider):
    payload = _event({"id": "cs_test_1", "object": "checkout.session"})
    with pytest.raises(AuthenticationError):
        stripe_provider.parse_event(payload, _signed(payload, ts=int(time.time()) - 3600))


def test_parse_event_requires_signature(stripe_provider):
    with pytest.raises(AuthenticationError) as ei:
        stripe_provider.parse_event(_event({}), None)
    assert ei.value.code == "missing_signature"


def test_non_checkout_objects_have_no_session(stripe_provider):
    payload = _event({"id": "in_1", "object": "invoice"}, event_type="invoice.paid")
    event = stripe_provider.parse_event(payload, _signed(payload))
    assert event.session is None and not event.is_checkout_completed


def test_session_from_dict_merges_line_item_metadata():
    session = session_from_dict({
        "id": "cs_test_2",
        "payment_status": "paid",
        "customer_email": "viewer@example.com",
        "line_items": {
            "data": [
                {"quantity": 1, "price": {"metadata": {"collection_id": "C1"}, "product": {"metadata": {}}}},
                {"price": {"metadata": {}, "product": {"metadata": {"content_id": "C2"}}}},
            ]
        },
    })
    assert session.line_items_loaded is True
    assert [i.price_metadata for i in session.line_items] == [{"collection_id": "C1"}, {}]
    assert session.line_items[1].product_metadata == {"content_id": "C2"}


class _StubSessions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def retrieve(self, session_id, params=None):
        self.calls.append((session_id, params))
        if self.error is not None:
            raise self.error
        return self.result


class _StubClient:
    def __init__(self, sessions):
        self.checkout = type("Checkout", (), {"sessions": sessions})()


class _JsonObject:
    def __init__(self, data):
        self.data = data

    def __str__(self):
        return json.dumps(self.data)


def test_provider_keeps_module_settings_untouched():
    before = (stripe.api_key, stripe.default_http_client)
    provider = StripePaymentProvider("sk_test_other", SECRET, timeout_seconds=2.5)
    assert isinstance(provider.client, stripe.StripeClient)
    assert (stripe.api_key, stripe.default_http_client) == before


def test_retrieve_session_uses_injected_client():
    sessions = _StubSessions(result=_JsonObject({
        "id": "cs_test_3",
        "payment_status": "paid",
        "metadata": {"user_id": "U1"},
        "line_items": {"data": [{"price": {"metadata": {"collection_id": "C1"}}}]},
    }))
    provider = StripePaymentProvider("sk_test_unit", SECRET, client=_StubClient(sessions))

    session = provider.retrieve_session("cs_test_3")

    assert sessions.calls == [("cs_test_3", {"expand": ["line_items.data.price.product"]})]
    assert session.is_paid and session.line_items[0].price_metadata == {"collection_id": "C1"}


def test_retrieve_session_maps_provider_errors():
    missing = StripePaymentProvider("sk_test_unit", SECRET, client=_StubClient(
        _StubSessions(error=stripe.InvalidRequestError("No such checkout.session", "id", http_status=404))
    ))
    with pytest.raises(NotFoundError):
        missing.retrieve_session("cs_missing")

    offline = StripePaymentProvider("sk_test_unit", SECRET, client=_StubClient(
        _StubSessions(error=stripe.APIConnectionError("connection reset"))
    ))
    with pytest.raises(UpstreamError) as ei:
        offline.retrieve_session("cs_test_3")
    assert ei.value.status_code == 503
