from __future__ import annotations

"""
FastAPI dependencies for the entitlement endpoints.

Services are built per request from injected collaborators, so tests swap
any layer with `app.dependency_overrides` (repositories, provider, signer,
clock) without touching module globals.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.http_utils import dev_auth_enabled
from app.core.config import settings
from app.core.exceptions import AuthenticationError
from app.core.jwt import decode_token, get_bearer_token
from app.db.session import get_async_db
from app.repositories.catalog import CatalogRepositoryProtocol
from app.repositories.entitlements import EntitlementRepositoryProtocol, get_configured_repository
from app.repositories.sql import SqlCatalogRepository, SqlEntitlementRepository
from app.services.access import AccessResolver
from app.services.payment_provider import PaymentProvider
from app.services.reconciler import PaymentReconciler
from app.services.signed_urls import SignedUrlIssuer
from app.services.signing import StorageSigner, build_storage_signer
from app.services.stripe_provider import StripePaymentProvider
from app.services.strikes import StrikeTracker
from app.utils.clock import Clock, utcnow


# ─────────────────────────────────────────────────────────────────────────────
# Collaborators
# ─────────────────────────────────────────────────────────────────────────────

async def get_entitlement_repository(
    db: AsyncSession = Depends(get_async_db),
) -> EntitlementRepositoryProtocol:
    return get_configured_repository("ENTITLEMENT_REPOSITORY_IMPL") or SqlEntitlementRepository(db)


async def get_catalog_repository(
    db: AsyncSession = Depends(get_async_db),
) -> CatalogRepositoryProtocol:
    return get_configured_repository("CATALOG_REPOSITORY_IMPL") or SqlCatalogRepository(db)


@lru_cache(maxsize=1)
def _payment_provider() -> PaymentProvider:
    return StripePaymentProvider()


@lru_cache(maxsize=1)
def _storage_signer() -> StorageSigner:
    return build_storage_signer()


def get_payment_provider() -> PaymentProvider:
    return _payment_provider()


def get_storage_signer() -> StorageSigner:
    return _storage_signer()


def get_clock() -> Clock:
    return utcnow


# ─────────────────────────────────────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────────────────────────────────────

def get_reconciler(
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    catalog: CatalogRepositoryProtocol = Depends(get_catalog_repository),
    provider: PaymentProvider = Depends(get_payment_provider),
    clock: Clock = Depends(get_clock),
) -> PaymentReconciler:
    return PaymentReconciler(
        repo,
        catalog,
        provider,
        clock=clock,
        access_token_ttl=timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES),
        default_currency=settings.DEFAULT_CURRENCY,
    )


def get_access_resolver(
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    clock: Clock = Depends(get_clock),
) -> AccessResolver:
    return AccessResolver(
        repo,
        clock=clock,
        recent_window=timedelta(minutes=settings.RECENT_PURCHASE_WINDOW_MINUTES),
    )


def get_signed_url_issuer(
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    catalog: CatalogRepositoryProtocol = Depends(get_catalog_repository),
    signer: StorageSigner = Depends(get_storage_signer),
    resolver: AccessResolver = Depends(get_access_resolver),
    clock: Clock = Depends(get_clock),
) -> SignedUrlIssuer:
    return SignedUrlIssuer(
        repo,
        catalog,
        signer,
        resolver=resolver,
        clock=clock,
        max_ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
        refresh_ratio=settings.SIGNED_URL_REFRESH_RATIO,
    )


def get_strike_tracker(
    repo: EntitlementRepositoryProtocol = Depends(get_entitlement_repository),
    clock: Clock = Depends(get_clock),
) -> StrikeTracker:
    return StrikeTracker(repo, clock=clock, threshold=settings.STRIKE_THRESHOLD)


# ─────────────────────────────────────────────────────────────────────────────
# Identity
# ─────────────────────────────────────────────────────────────────────────────

def get_optional_user_id(request: Request) -> Optional[str]:
    """User id from a Bearer session, or `X-User-Id` when dev auth is on.

    Sets `request.state.user_id` so the rate limiter keys on the user.
    """
    token = get_bearer_token(request)
    user_id: Optional[str] = None
    if token:
        user_id = decode_token(token)["sub"]
    elif dev_auth_enabled():
        user_id = (request.headers.get("x-user-id") or "").strip() or None
    if user_id:
        request.state.user_id = user_id
    return user_id


def get_current_user_id(user_id: Optional[str] = Depends(get_optional_user_id)) -> str:
    if not user_id:
        raise AuthenticationError("Authentication required", code="authentication_required")
    return user_id


__all__ = [
    "get_entitlement_repository",
    "get_catalog_repository",
    "get_payment_provider",
    "get_storage_signer",
    "get_clock",
    "get_reconciler",
    "get_access_resolver",
    "get_signed_url_issuer",
    "get_strike_tracker",
    "get_optional_user_id",
    "get_current_user_id",
]
