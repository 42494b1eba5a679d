from __future__ import annotations

"""
Signed-URL issuer.

Converts an authorization (an entitlement, or an access token from the
e-mail flow) into a short-lived storage URL. Permanence applies to the
grant, never to the URL: permanent entitlements still get a short TTL, and
clients rotate by re-requesting every `refresh_after_seconds`.

TTL rules
---------
- entitlement with `expires_at`: `min(expires_at - now, max_ttl)`; a
  non-positive remainder is an `ExpiryError`
- permanent entitlement: `max_ttl`
- access token: the token's remaining lifetime (further clipped by the
  backing entitlement), so repeated exchanges never extend access
"""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.core import metrics
from app.core.exceptions import AuthorizationError, ExpiryError, NotFoundError, UpstreamError
from app.core.logger import logger
from app.repositories.catalog import CatalogRepositoryProtocol, ContentRecord
from app.repositories.entitlements import EntitlementRecord, EntitlementRepositoryProtocol
from app.services.access import AccessResolver
from app.services.signing import SigningError, StorageSigner
from app.utils.clock import Clock, seconds_until, utcnow


@dataclass
class SignedUrl:
    url: str
    expires_at: datetime
    ttl_seconds: int
    refresh_after_seconds: int


class SignedUrlIssuer:
    def __init__(
        self,
        repo: EntitlementRepositoryProtocol,
        catalog: CatalogRepositoryProtocol,
        signer: StorageSigner,
        *,
        resolver: Optional[AccessResolver] = None,
        clock: Clock = utcnow,
        max_ttl_seconds: int = 60,
        refresh_ratio: float = 0.75,
    ) -> None:
        self.repo = repo
        self.catalog = catalog
        self.signer = signer
        self.resolver = resolver or AccessResolver(repo, clock=clock)
        self.clock = clock
        self.max_ttl_seconds = int(max_ttl_seconds)
        self.refresh_ratio = float(refresh_ratio)

    async def _content(self, content_id: str) -> ContentRecord:
        content = await self.catalog.get_content(content_id)
        if content is None:
            raise NotFoundError("Content not found", details={"content_id": content_id})
        return content

    def _sign(self, content: ContentRecord, ttl: int, now: datetime, *, source: str) -> SignedUrl:
        started = time.perf_counter()
        signer_name = getattr(self.signer, "name", type(self.signer).__name__)
        try:
            url = self.signer.sign(content.storage_path, ttl)
        except SigningError as e:
            metrics.observe_sign_seconds(signer_name, "error", time.perf_counter() - started)
            metrics.inc_signed_url(source, "error")
            logger.error("Signing failed for content {}: {}", content.id, e)
            raise UpstreamError("Unable to sign media URL", code="signing_failed") from e
        metrics.observe_sign_seconds(signer_name, "ok", time.perf_counter() - started)
        metrics.inc_signed_url(source, "ok")
        return SignedUrl(
            url=url,
            expires_at=now + timedelta(seconds=ttl),
            ttl_seconds=ttl,
            refresh_after_seconds=max(0, math.floor(ttl * self.refresh_ratio)),
        )

    async def issue_for_entitlement(self, entitlement: EntitlementRecord, content: ContentRecord) -> SignedUrl:
        now = self.clock()
        if not entitlement.is_active:
            raise ExpiryError(details={"entitlement_id": entitlement.id})

        ttl = self.max_ttl_seconds
        if entitlement.expires_at is not None:
            remaining = seconds_until(entitlement.expires_at, now)
            if remaining <= 0:
                raise ExpiryError(details={"entitlement_id": entitlement.id})
            ttl = min(remaining, ttl)
        return self._sign(content, ttl, now, source="entitlement")

    async def issue_for_user(self, user_id: str, content_id: str) -> SignedUrl:
        """Session flow: resolve access, then sign."""
        content = await self._content(content_id)
        entitlement = await self.resolver.require_access(user_id, content_id)
        return await self.issue_for_entitlement(entitlement, content)

    async def exchange_token(self, token: str, content_id: str) -> SignedUrl:
        """Token flow: the URL never outlives the token."""
        now = self.clock()
        record = await self.repo.get_token(token) if token else None
        if record is None or record.content_id != content_id:
            metrics.inc_token_exchanged("invalid")
            raise AuthorizationError("Invalid or expired token", code="invalid_token")

        remaining = seconds_until(record.expires_at, now)
        if remaining <= 0:
            metrics.inc_token_exchanged("expired")
            raise ExpiryError("Token expired", code="token_expired")

        # Revocation after minting must still cut the token off
        entitlement = await self.repo.find_active(user_id=record.user_id, content_id=content_id, now=now)
        if entitlement is None:
            metrics.inc_token_exchanged("revoked")
            raise ExpiryError(details={"content_id": content_id})
        if entitlement.expires_at is not None:
            remaining = min(remaining, seconds_until(entitlement.expires_at, now))
            if remaining <= 0:
                metrics.inc_token_exchanged("expired")
                raise ExpiryError(details={"content_id": content_id})

        content = await self._content(content_id)
        signed = self._sign(content, remaining, now, source="token")
        metrics.inc_token_exchanged("ok")
        return signed


__all__ = ["SignedUrl", "SignedUrlIssuer"]
