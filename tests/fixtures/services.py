# tests/fixtures/services.py
"""
⚙️ Service fixtures wired to the in-memory stores and the frozen clock.
"""

from datetime import timedelta

import pytest

from app.services.access import AccessResolver
from app.services.reconciler import PaymentReconciler
from app.services.signed_urls import SignedUrlIssuer
from app.services.strikes import StrikeTracker


@pytest.fixture()
def reconciler(repo, catalog, provider, clock) -> PaymentReconciler:
    return PaymentReconciler(repo, catalog, provider, clock=clock, access_token_ttl=timedelta(minutes=30))


@pytest.fixture()
def resolver(repo, clock) -> AccessResolver:
    return AccessResolver(repo, clock=clock, recent_window=timedelta(minutes=30))


@pytest.fixture()
def issuer(repo, catalog, signer, resolver, clock) -> SignedUrlIssuer:
    return SignedUrlIssuer(repo, catalog, signer, resolver=resolver, clock=clock, max_ttl_seconds=60, refresh_ratio=0.75)


@pytest.fixture()
def tracker(repo, clock) -> StrikeTracker:
    return StrikeTracker(repo, clock=clock, threshold=3)


__all__ = ["reconciler", "resolver", "issuer", "tracker"]
