from __future__ import annotations

"""Tiered access resolution.

A user may watch a piece of content when, checked in order and stopping at
the first hit:

1. a completed, live entitlement exists for that exact content;
2. any live entitlement exists for that exact content (payment cleared,
   completion event not landed yet);
3. the user has any live entitlement created within the recent-purchase
   window, for any content (bridges reconciliation latency right after
   checkout).

Tier 3 is skipped when the user already holds an entitlement for this exact
content that is no longer live, so a revoked grant cannot be revived by a
sibling purchase. "No access" is an answer, not an error.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from app.core import metrics
from app.core.exceptions import AuthorizationError, ExpiryError
from app.repositories.entitlements import EntitlementRecord, EntitlementRepositoryProtocol
from app.utils.clock import Clock, utcnow


@dataclass
class AccessDecision:
    has_access: bool
    tier: Optional[int] = None
    entitlement: Optional[EntitlementRecord] = None


class AccessResolver:
    def __init__(
        self,
        repo: EntitlementRepositoryProtocol,
        *,
        clock: Clock = utcnow,
        recent_window: timedelta = timedelta(minutes=30),
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.recent_window = recent_window

    async def has_access(self, user_id: str, content_id: str) -> AccessDecision:
        now = self.clock()

        ent = await self.repo.find_completed_active(user_id=user_id, content_id=content_id, now=now)
        if ent is not None:
            metrics.inc_access_check("1")
            return AccessDecision(True, 1, ent)

        ent = await self.repo.find_active(user_id=user_id, content_id=content_id, now=now)
        if ent is not None:
            metrics.inc_access_check("2")
            return AccessDecision(True, 2, ent)

        # A lapsed or revoked grant for this exact content is final
        if await self.repo.latest_for_pair(user_id=user_id, content_id=content_id) is None:
            ent = await self.repo.find_recent_live(user_id=user_id, since=now - self.recent_window, now=now)
            if ent is not None:
                metrics.inc_access_check("3")
                return AccessDecision(True, 3, ent)

        metrics.inc_access_check("none")
        return AccessDecision(False)

    async def require_access(self, user_id: str, content_id: str) -> EntitlementRecord:
        """Entitlement that authorizes streaming, or `AuthorizationError` / `ExpiryError`.

        `ExpiryError` means a grant for this content existed but lapsed or was
        revoked; `AuthorizationError` means there never was one.
        """
        decision = await self.has_access(user_id, content_id)
        if decision.has_access:
            return decision.entitlement  # type: ignore[return-value]

        latest = await self.repo.latest_for_pair(user_id=user_id, content_id=content_id)
        if latest is not None:
            raise ExpiryError(details={"content_id": content_id}, user_id=user_id)
        raise AuthorizationError(details={"content_id": content_id}, user_id=user_id)


__all__ = ["AccessDecision", "AccessResolver"]
