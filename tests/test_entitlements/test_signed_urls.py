# tests/test_entitlements/test_signed_urls.py

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import AuthorizationError, ExpiryError, NotFoundError, UpstreamError
from app.repositories.entitlements import AccessTokenRecord, EntitlementRecord
from app.services.signed_urls import SignedUrlIssuer
from tests.fixtures.stores import FailingSigner


async def _grant(repo, clock, *, id="E1", content_id="C1", expires_at=None):
    return await repo.add(EntitlementRecord(
        id=id,
        user_id="U1",
        content_id=content_id,
        payment_session_id="S1",
        amount_paid=Decimal("3.99"),
        currency="usd",
        status="completed",
        is_active=True,
        created_at=clock(),
        expires_at=expires_at,
    ))


async def _token(repo, clock, *, content_id="C1", lifetime=timedelta(minutes=30), token="tok-1"):
    return await repo.add_token(AccessTokenRecord(
        token=token,
        content_id=content_id,
        user_id="U1",
        expires_at=clock() + lifetime,
        created_at=clock(),
    ))


@pytest.mark.anyio
async def test_permanent_entitlement_gets_short_ttl(issuer, repo, signer, clock):
    await _grant(repo, clock)
    signed = await issuer.issue_for_user("U1", "C1")

    assert signed.ttl_seconds == 60
    assert signed.refresh_after_seconds == 45
    assert signed.expires_at == clock() + timedelta(seconds=60)
    assert signer.calls == [("collections/c1/master.m3u8", 60)]


@pytest.mark.anyio
async def test_ttl_clipped_to_remaining_entitlement(issuer, repo, signer, clock):
    await _grant(repo, clock, content_id="V1", expires_at=clock() + timedelta(seconds=100))
    clock.advance(seconds=70)
    signed = await issuer.issue_for_user("U1", "V1")
    assert signed.ttl_seconds == 30
    assert signed.refresh_after_seconds == 22
    assert signed.expires_at <= clock() + timedelta(seconds=30)


@pytest.mark.anyio
async def test_no_entitlement_is_purchase_required(issuer, signer):
    with pytest.raises(AuthorizationError):
        await issuer.issue_for_user("U1", "C1")
    assert signer.calls == []


@pytest.mark.anyio
async def test_unknown_content_is_not_found(issuer):
    with pytest.raises(NotFoundError):
        await issuer.issue_for_user("U1", "NOPE")


@pytest.mark.anyio
async def test_lapsed_entitlement_is_expiry(issuer, repo, clock):
    await _grant(repo, clock, expires_at=clock() + timedelta(seconds=5))
    clock.advance(seconds=5)
    with pytest.raises(ExpiryError):
        await issuer.issue_for_user("U1", "C1")


@pytest.mark.anyio
async def test_signer_failure_is_upstream_error(repo, catalog, resolver, clock):
    await _grant(repo, clock)
    issuer = SignedUrlIssuer(repo, catalog, FailingSigner(), resolver=resolver, clock=clock)
    with pytest.raises(UpstreamError) as ei:
        await issuer.issue_for_user("U1", "C1")
    assert ei.value.status_code == 503
    assert ei.value.code == "signing_failed"
    assert ei.value.headers["Retry-After"]


@pytest.mark.anyio
async def test_token_exchange_never_extends_access(issuer, repo, clock):
    await _grant(repo, clock)
    await _token(repo, clock, lifetime=timedelta(seconds=50))

    first = await issuer.exchange_token("tok-1", "C1")
    clock.advance(seconds=10)
    second = await issuer.exchange_token("tok-1", "C1")

    assert first.ttl_seconds == 50
    assert second.ttl_seconds <= first.ttl_seconds - 10
    assert second.expires_at <= first.expires_at


@pytest.mark.anyio
async def test_token_for_other_content_is_rejected(issuer, repo, clock):
    await _grant(repo, clock)
    await _token(repo, clock)
    with pytest.raises(AuthorizationError) as ei:
        await issuer.exchange_token("tok-1", "C2")
    assert ei.value.code == "invalid_token"


@pytest.mark.anyio
async def test_unknown_token_is_rejected(issuer):
    with pytest.raises(AuthorizationError):
        await issuer.exchange_token("missing", "C1")


@pytest.mark.anyio
async def test_expired_token_is_expiry(issuer, repo, clock):
    await _grant(repo, clock)
    await _token(repo, clock, lifetime=timedelta(seconds=30))
    clock.advance(seconds=30)
    with pytest.raises(ExpiryError) as ei:
        await issuer.exchange_token("tok-1", "C1")
    assert ei.value.code == "token_expired"


@pytest.mark.anyio
async def test_token_stops_working_after_revocation(issuer, repo, tracker, clock):
    await _grant(repo, clock)
    await _token(repo, clock)
    await tracker.revoke_access("E1")
    clock.advance(seconds=1)
    with pytest.raises(ExpiryError):
        await issuer.exchange_token("tok-1", "C1")


@pytest.mark.anyio
async def test_token_exchange_rejects_entitlement_in_final_second(issuer, repo, signer, clock):
    await _grant(repo, clock, expires_at=clock() + timedelta(milliseconds=500))
    await _token(repo, clock)
    with pytest.raises(ExpiryError) as ei:
        await issuer.exchange_token("tok-1", "C1")
    assert ei.value.status_code == 403
    assert signer.calls == []
