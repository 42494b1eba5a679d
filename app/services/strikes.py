from __future__ import annotations

"""
Strike tracker / revocation engine.

Per-entitlement abuse state, derived from `strike_count` plus the
entitlement's liveness:

    Clean ──report──▶ Warned ──report──▶ FinalWarning ──report──▶ Revoked
      └────────────── screen_capture_detected (any state) ──────────▲

- Every report appends a security log entry **before** any state change;
  the entry survives even when the transition fails.
- Revocation sets `expires_at = now` and the counter to the threshold. The
  entitlement row and its log history stay queryable.
- Reaching `Revoked` by report appends a second `access_revoked` entry.
  Reports against an already revoked entitlement are logged only.
- Admin overrides (`revoke_access`, `reset_strikes`) are audited as
  `manual_revocation` / `strikes_reset`.

Concurrent reports increment the counter with one atomic UPDATE each.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from app.core import metrics
from app.core.exceptions import DataError, NotFoundError
from app.core.logger import logger
from app.db.base_class import new_id
from app.repositories.entitlements import (
    EntitlementRecord,
    EntitlementRepositoryProtocol,
    SecurityLogRecord,
)
from app.utils.clock import Clock, utcnow

SCREENSHOT_DETECTED = "screenshot_detected"
SCREEN_CAPTURE_DETECTED = "screen_capture_detected"
DEVTOOLS_DETECTED = "devtools_detected"
RECORDING_DETECTED = "recording_detected"

REPORTABLE_EVENTS = frozenset({
    SCREENSHOT_DETECTED,
    SCREEN_CAPTURE_DETECTED,
    DEVTOOLS_DETECTED,
    RECORDING_DETECTED,
})

ACCESS_REVOKED = "access_revoked"
MANUAL_REVOCATION = "manual_revocation"
STRIKES_RESET = "strikes_reset"

ADMIN_IP = "admin"
ADMIN_USER_AGENT = "admin_dashboard"


# ─────────────────────────────────────────────────────────────────────────────
# State
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Clean:
    name = "clean"


@dataclass(frozen=True)
class Warned:
    name = "warned"


@dataclass(frozen=True)
class FinalWarning:
    name = "final_warning"


@dataclass(frozen=True)
class Revoked:
    reason: str
    name = "revoked"


StrikeState = Union[Clean, Warned, FinalWarning, Revoked]


def state_for_count(count: int, threshold: int) -> StrikeState:
    if count >= threshold:
        return Revoked(reason="strike_limit_reached")
    if count == threshold - 1:
        return FinalWarning()
    if count >= 1:
        return Warned()
    return Clean()


def derive_state(entitlement: EntitlementRecord, now: datetime, threshold: int) -> StrikeState:
    if not entitlement.is_live(now):
        reason = "strike_limit_reached" if entitlement.strike_count >= threshold else "expired"
        return Revoked(reason=reason)
    return state_for_count(entitlement.strike_count, threshold)


@dataclass
class StrikeOutcome:
    entitlement_id: str
    strike_count: int
    threshold: int
    state: StrikeState
    reason: str

    @property
    def revoked(self) -> bool:
        return isinstance(self.state, Revoked)

    @property
    def final_warning(self) -> bool:
        return isinstance(self.state, FinalWarning)


@dataclass
class LogPage:
    entries: List[SecurityLogRecord]
    limit: int
    offset: int
    has_more: bool
    event_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def total_events_24h(self) -> int:
        return sum(self.event_counts.values())


# ─────────────────────────────────────────────────────────────────────────────
# Tracker
# ─────────────────────────────────────────────────────────────────────────────

class StrikeTracker:
    def __init__(
        self,
        repo: EntitlementRepositoryProtocol,
        *,
        clock: Clock = utcnow,
        threshold: int = 3,
    ) -> None:
        self.repo = repo
        self.clock = clock
        self.threshold = int(threshold)

    async def _require(self, entitlement_id: str) -> EntitlementRecord:
        ent = await self.repo.get(entitlement_id)
        if ent is None:
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        return ent

    async def _append(
        self,
        entitlement_id: str,
        event_type: str,
        *,
        ip: Optional[str],
        user_agent: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> SecurityLogRecord:
        return await self.repo.add_log(
            SecurityLogRecord(
                id=new_id(),
                entitlement_id=entitlement_id,
                event_type=event_type,
                created_at=at or self.clock(),
                ip_address=ip,
                user_agent=user_agent[:1024] if user_agent else None,
                details=dict(details or {}),
            )
        )

    async def find_entitlement(
        self,
        *,
        entitlement_id: Optional[str] = None,
        session_id: Optional[str] = None,
        content_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> EntitlementRecord:
        """Locate the reported entitlement by id, or by payment session.

        With `user_id`, entitlements of other users are reported as not found.
        """
        if entitlement_id:
            ent = await self._require(entitlement_id)
            if user_id is not None and ent.user_id != user_id:
                raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
            return ent

        if not session_id:
            raise DataError("entitlementId or sessionId is required", code="missing_identifier")

        matches = await self.repo.list_by_session(session_id, user_id=user_id, content_id=content_id)
        if not matches:
            raise NotFoundError("No entitlement for payment session", details={"session_id": session_id})
        if len(matches) > 1:
            raise DataError(
                "Payment session covers several items; pass contentId",
                code="ambiguous_session",
                details={"session_id": session_id, "matches": len(matches)},
            )
        return matches[0]

    async def _revoke(self, ent: EntitlementRecord, cause: str, now: datetime, *, ip: Optional[str], user_agent: Optional[str]) -> EntitlementRecord:
        updated = await self.repo.revoke(ent.id, at=now, strike_count=self.threshold)
        await self._append(
            ent.id,
            ACCESS_REVOKED,
            ip=ip,
            user_agent=user_agent,
            details={"cause": cause, "strike_count": updated.strike_count, "revoked_at": now.isoformat()},
            at=now,
        )
        metrics.inc_revocation(cause)
        logger.bind(entitlement_id=ent.id, user_id=ent.user_id).warning("Access revoked: {}", cause)
        return updated

    async def report(
        self,
        entitlement_id: str,
        event_type: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> StrikeOutcome:
        if event_type not in REPORTABLE_EVENTS:
            raise DataError("Unsupported event type", code="invalid_event_type", details={"event_type": event_type})

        ent = await self._require(entitlement_id)
        now = self.clock()

        # Audit first; nothing below may lose this entry
        await self._append(ent.id, event_type, ip=ip, user_agent=user_agent, details=details, at=now)

        if not ent.is_live(now):
            metrics.inc_strike(event_type, "already_revoked")
            return StrikeOutcome(
                entitlement_id=ent.id,
                strike_count=ent.strike_count,
                threshold=self.threshold,
                state=Revoked(reason="already_revoked"),
                reason="already_revoked",
            )

        if event_type == SCREEN_CAPTURE_DETECTED:
            state: StrikeState = Revoked(reason=SCREEN_CAPTURE_DETECTED)
        else:
            ent = await self.repo.increment_strikes(ent.id)
            state = state_for_count(ent.strike_count, self.threshold)

        if isinstance(state, Revoked):
            ent = await self._revoke(ent, state.reason, now, ip=ip, user_agent=user_agent)
            reason = state.reason
        elif isinstance(state, FinalWarning):
            reason = "final_warning"
        elif isinstance(state, Warned):
            reason = "warning"
        else:
            reason = "clean"

        metrics.inc_strike(event_type, state.name)
        return StrikeOutcome(
            entitlement_id=ent.id,
            strike_count=ent.strike_count,
            threshold=self.threshold,
            state=state,
            reason=reason,
        )

    # ── Admin overrides ──────────────────────────────────────────────────────
    async def revoke_access(self, entitlement_id: str, reason: Optional[str] = None) -> EntitlementRecord:
        ent = await self._require(entitlement_id)
        now = self.clock()
        reason = reason or "Manual revocation by admin"
        await self._append(
            ent.id,
            MANUAL_REVOCATION,
            ip=ADMIN_IP,
            user_agent=ADMIN_USER_AGENT,
            details={"reason": reason, "revoked_at": now.isoformat()},
            at=now,
        )
        updated = await self.repo.revoke(ent.id, at=now, strike_count=self.threshold)
        metrics.inc_revocation("manual")
        logger.bind(entitlement_id=ent.id).warning("Access revoked by admin: {}", reason)
        return updated

    async def reset_strikes(self, entitlement_id: str, reason: Optional[str] = None) -> EntitlementRecord:
        ent = await self._require(entitlement_id)
        now = self.clock()
        reason = reason or "Strikes reset by admin"
        await self._append(
            ent.id,
            STRIKES_RESET,
            ip=ADMIN_IP,
            user_agent=ADMIN_USER_AGENT,
            details={"reason": reason, "reset_at": now.isoformat(), "previous_strike_count": ent.strike_count},
            at=now,
        )
        updated = await self.repo.reset_strikes(ent.id)
        logger.bind(entitlement_id=ent.id).info("Strikes reset by admin: {}", reason)
        return updated

    async def list_logs(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: Optional[str] = None,
        entitlement_id: Optional[str] = None,
    ) -> LogPage:
        rows = await self.repo.list_logs(
            limit=limit + 1,
            offset=offset,
            event_type=event_type,
            entitlement_id=entitlement_id,
        )
        counts = await self.repo.count_logs_since(self.clock() - timedelta(hours=24))
        return LogPage(
            entries=rows[:limit],
            limit=limit,
            offset=offset,
            has_more=len(rows) > limit,
            event_counts=counts,
        )


__all__ = [
    "REPORTABLE_EVENTS",
    "Clean",
    "Warned",
    "FinalWarning",
    "Revoked",
    "StrikeState",
    "StrikeOutcome",
    "LogPage",
    "StrikeTracker",
    "derive_state",
    "state_for_count",
]
