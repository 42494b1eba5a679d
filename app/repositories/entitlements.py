from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.core.exceptions import ConflictError, NotFoundError


# ─────────────────────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class EntitlementRecord:
    id: str
    user_id: str
    content_id: str
    payment_session_id: str
    amount_paid: Decimal
    currency: str
    status: str  # pending|completed
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None
    strike_count: int = 0
    bound_ip: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        """Grants access right now (active and not past `expires_at`)."""
        return self.is_active and (self.expires_at is None or self.expires_at > now)


@dataclass
class SecurityLogRecord:
    id: str
    entitlement_id: str
    event_type: str
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AccessTokenRecord:
    token: str
    content_id: str
    user_id: str
    expires_at: datetime
    created_at: datetime


# ─────────────────────────────────────────────────────────────────────────────
# Protocol
# ─────────────────────────────────────────────────────────────────────────────

class EntitlementRepositoryProtocol:
    """Persistence for entitlements, their security log, and access tokens.

    `add` raises `ConflictError` when the `(user_id, content_id,
    payment_session_id)` key already exists. Mutators raise `NotFoundError`
    for unknown ids. Every write is durable when the call returns.
    """

    # Entitlements
    async def add(self, record: EntitlementRecord) -> EntitlementRecord:
        raise NotImplementedError

    async def get(self, entitlement_id: str) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def find_by_key(self, *, user_id: str, content_id: str, payment_session_id: str) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def list_by_session(self, payment_session_id: str, *, user_id: Optional[str] = None, content_id: Optional[str] = None) -> List[EntitlementRecord]:
        raise NotImplementedError

    async def find_completed_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def find_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def find_recent_live(self, *, user_id: str, since: datetime, now: datetime) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def latest_for_pair(self, *, user_id: str, content_id: str) -> Optional[EntitlementRecord]:
        raise NotImplementedError

    async def increment_strikes(self, entitlement_id: str) -> EntitlementRecord:
        raise NotImplementedError

    async def revoke(self, entitlement_id: str, *, at: datetime, strike_count: int) -> EntitlementRecord:
        raise NotImplementedError

    async def reset_strikes(self, entitlement_id: str) -> EntitlementRecord:
        raise NotImplementedError

    # Security log (append-only)
    async def add_log(self, entry: SecurityLogRecord) -> SecurityLogRecord:
        raise NotImplementedError

    async def list_logs(self, *, limit: int, offset: int, event_type: Optional[str] = None, entitlement_id: Optional[str] = None) -> List[SecurityLogRecord]:
        raise NotImplementedError

    async def count_logs_since(self, since: datetime) -> Dict[str, int]:
        raise NotImplementedError

    # Access tokens
    async def add_token(self, record: AccessTokenRecord) -> AccessTokenRecord:
        raise NotImplementedError

    async def get_token(self, token: str) -> Optional[AccessTokenRecord]:
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────────────
# In-memory implementation (tests, local dev)
# ─────────────────────────────────────────────────────────────────────────────

class MemoryEntitlementRepository(EntitlementRepositoryProtocol):
    def __init__(self) -> None:
        self._entitlements: Dict[str, EntitlementRecord] = {}
        self._logs: List[SecurityLogRecord] = []
        self._tokens: Dict[str, AccessTokenRecord] = {}

    def _newest_first(self, rows: List[EntitlementRecord]) -> List[EntitlementRecord]:
        return sorted(rows, key=lambda r: r.created_at, reverse=True)

    def _require(self, entitlement_id: str) -> EntitlementRecord:
        rec = self._entitlements.get(entitlement_id)
        if rec is None:
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        return rec

    async def add(self, record: EntitlementRecord) -> EntitlementRecord:
        existing = await self.find_by_key(
            user_id=record.user_id,
            content_id=record.content_id,
            payment_session_id=record.payment_session_id,
        )
        if existing is not None:
            raise ConflictError(details={"entitlement_id": existing.id})
        self._entitlements[record.id] = replace(record)
        return replace(record)

    async def get(self, entitlement_id: str) -> Optional[EntitlementRecord]:
        rec = self._entitlements.get(entitlement_id)
        return replace(rec) if rec else None

    async def find_by_key(self, *, user_id: str, content_id: str, payment_session_id: str) -> Optional[EntitlementRecord]:
        for rec in self._entitlements.values():
            if (rec.user_id, rec.content_id, rec.payment_session_id) == (user_id, content_id, payment_session_id):
                return replace(rec)
        return None

    async def list_by_session(self, payment_session_id: str, *, user_id: Optional[str] = None, content_id: Optional[str] = None) -> List[EntitlementRecord]:
        rows = [
            r for r in self._entitlements.values()
            if r.payment_session_id == payment_session_id
            and (user_id is None or r.user_id == user_id)
            and (content_id is None or r.content_id == content_id)
        ]
        return [replace(r) for r in sorted(rows, key=lambda r: r.created_at)]

    async def find_completed_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        for rec in self._newest_first(list(self._entitlements.values())):
            if rec.user_id == user_id and rec.content_id == content_id and rec.status == "completed" and rec.is_live(now):
                return replace(rec)
        return None

    async def find_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        for rec in self._newest_first(list(self._entitlements.values())):
            if rec.user_id == user_id and rec.content_id == content_id and rec.is_live(now):
                return replace(rec)
        return None

    async def find_recent_live(self, *, user_id: str, since: datetime, now: datetime) -> Optional[EntitlementRecord]:
        for rec in self._newest_first(list(self._entitlements.values())):
            if rec.user_id == user_id and rec.created_at >= since and rec.is_live(now):
                return replace(rec)
        return None

    async def latest_for_pair(self, *, user_id: str, content_id: str) -> Optional[EntitlementRecord]:
        for rec in self._newest_first(list(self._entitlements.values())):
            if rec.user_id == user_id and rec.content_id == content_id:
                return replace(rec)
        return None

    async def increment_strikes(self, entitlement_id: str) -> EntitlementRecord:
        rec = self._require(entitlement_id)
        rec.strike_count += 1
        return replace(rec)

    async def revoke(self, entitlement_id: str, *, at: datetime, strike_count: int) -> EntitlementRecord:
        rec = self._require(entitlement_id)
        rec.expires_at = at
        rec.strike_count = max(rec.strike_count, strike_count)
        return replace(rec)

    async def reset_strikes(self, entitlement_id: str) -> EntitlementRecord:
        rec = self._require(entitlement_id)
        rec.strike_count = 0
        return replace(rec)

    async def add_log(self, entry: SecurityLogRecord) -> SecurityLogRecord:
        self._logs.append(replace(entry, details=dict(entry.details)))
        return replace(entry)

    async def list_logs(self, *, limit: int, offset: int, event_type: Optional[str] = None, entitlement_id: Optional[str] = None) -> List[SecurityLogRecord]:
        rows = [
            e for e in self._logs
            if (event_type is None or e.event_type == event_type)
            and (entitlement_id is None or e.entitlement_id == entitlement_id)
        ]
        # newest first; insertion order breaks ties
        ordered = [e for _, e in sorted(enumerate(rows), key=lambda p: (p[1].created_at, p[0]), reverse=True)]
        return [replace(e) for e in ordered[offset: offset + limit]]

    async def count_logs_since(self, since: datetime) -> Dict[str, int]:
        return dict(Counter(e.event_type for e in self._logs if e.created_at >= since))

    async def add_token(self, record: AccessTokenRecord) -> AccessTokenRecord:
        if record.token in self._tokens:
            raise ConflictError("Access token collision")
        self._tokens[record.token] = replace(record)
        return replace(record)

    async def get_token(self, token: str) -> Optional[AccessTokenRecord]:
        rec = self._tokens.get(token)
        return replace(rec) if rec else None


# ─────────────────────────────────────────────────────────────────────────────
# Factory (env override, e.g.
#   ENTITLEMENT_REPOSITORY_IMPL="app.repositories.entitlements:MemoryEntitlementRepository")
# ─────────────────────────────────────────────────────────────────────────────

def _import_string(path: str, env_var: str):
    module_path, _, class_name = path.partition(":")
    if not module_path or not class_name:
        raise ValueError(f"{env_var} must be 'module.sub:ClassName'")
    module = __import__(module_path, fromlist=[class_name])
    return getattr(module, class_name)


_configured: Dict[str, Any] = {}


def get_configured_repository(env_var: str) -> Optional[Any]:
    """Process-wide instance of the class named by `env_var`, or None when unset.

    Unset means the SQL repositories are used. Configured classes must take
    no constructor arguments.
    """
    impl_path = os.environ.get(env_var)
    if not impl_path:
        return None
    key = f"{env_var}={impl_path}"
    if key not in _configured:
        _configured[key] = _import_string(impl_path, env_var)()
    return _configured[key]


__all__ = [
    "EntitlementRecord",
    "SecurityLogRecord",
    "AccessTokenRecord",
    "EntitlementRepositoryProtocol",
    "MemoryEntitlementRepository",
    "get_configured_repository",
]
