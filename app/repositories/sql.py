from __future__ import annotations

"""SQLAlchemy-backed repositories.

Each mutating call commits before returning so an acknowledged write survives
a crash of the caller. The unique `(user_id, content_id, payment_session_id)`
constraint is enforced by the database; an `IntegrityError` on insert is
reported as `ConflictError`, the reconciler's "already granted" signal.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError
from app.db.models import AccessToken, Content, Entitlement, SecurityLog, User
from app.repositories.catalog import CatalogRepositoryProtocol, ContentRecord, UserRecord
from app.repositories.entitlements import (
    AccessTokenRecord,
    EntitlementRecord,
    EntitlementRepositoryProtocol,
    SecurityLogRecord,
)
from app.utils.clock import as_utc


def _entitlement(row: Entitlement) -> EntitlementRecord:
    return EntitlementRecord(
        id=row.id,
        user_id=row.user_id,
        content_id=row.content_id,
        payment_session_id=row.payment_session_id,
        amount_paid=row.amount_paid,
        currency=row.currency,
        status=row.status,
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        strike_count=int(row.strike_count or 0),
        bound_ip=row.bound_ip,
    )


def _log(row: SecurityLog) -> SecurityLogRecord:
    return SecurityLogRecord(
        id=row.id,
        entitlement_id=row.entitlement_id,
        event_type=row.event_type,
        created_at=as_utc(row.created_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=dict(row.details or {}),
    )


def _token(row: AccessToken) -> AccessTokenRecord:
    return AccessTokenRecord(
        token=row.token,
        content_id=row.content_id,
        user_id=row.user_id,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
    )


def _live(now: datetime):
    return (Entitlement.is_active.is_(True)) & (
        Entitlement.expires_at.is_(None) | (Entitlement.expires_at > now)
    )


class SqlEntitlementRepository(EntitlementRepositoryProtocol):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _first(self, stmt) -> Optional[EntitlementRecord]:
        row = (await self.session.execute(stmt.limit(1))).scalars().first()
        return _entitlement(row) if row is not None else None

    async def _reload(self, entitlement_id: str) -> EntitlementRecord:
        stmt = (
            select(Entitlement)
            .where(Entitlement.id == entitlement_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalars().first()
        if row is None:
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        return _entitlement(row)

    # ── Entitlements ─────────────────────────────────────────────────────────
    async def add(self, record: EntitlementRecord) -> EntitlementRecord:
        row = Entitlement(
            id=record.id,
            user_id=record.user_id,
            content_id=record.content_id,
            payment_session_id=record.payment_session_id,
            amount_paid=record.amount_paid,
            currency=record.currency,
            status=record.status,
            is_active=record.is_active,
            created_at=record.created_at,
            expires_at=record.expires_at,
            strike_count=record.strike_count,
            bound_ip=record.bound_ip,
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            existing = await self.find_by_key(
                user_id=record.user_id,
                content_id=record.content_id,
                payment_session_id=record.payment_session_id,
            )
            if existing is None:
                # FK or check violation, not the idempotency key
                raise
            raise ConflictError(details={"entitlement_id": existing.id}) from exc
        return record

    async def get(self, entitlement_id: str) -> Optional[EntitlementRecord]:
        return await self._first(select(Entitlement).where(Entitlement.id == entitlement_id))

    async def find_by_key(self, *, user_id: str, content_id: str, payment_session_id: str) -> Optional[EntitlementRecord]:
        return await self._first(
            select(Entitlement).where(
                Entitlement.user_id == user_id,
                Entitlement.content_id == content_id,
                Entitlement.payment_session_id == payment_session_id,
            )
        )

    async def list_by_session(self, payment_session_id: str, *, user_id: Optional[str] = None, content_id: Optional[str] = None) -> List[EntitlementRecord]:
        stmt = select(Entitlement).where(Entitlement.payment_session_id == payment_session_id)
        if user_id is not None:
            stmt = stmt.where(Entitlement.user_id == user_id)
        if content_id is not None:
            stmt = stmt.where(Entitlement.content_id == content_id)
        rows = (await self.session.execute(stmt.order_by(Entitlement.created_at.asc()))).scalars().all()
        return [_entitlement(r) for r in rows]

    async def find_completed_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        return await self._first(
            select(Entitlement)
            .where(
                Entitlement.user_id == user_id,
                Entitlement.content_id == content_id,
                Entitlement.status == "completed",
                _live(now),
            )
            .order_by(Entitlement.created_at.desc())
        )

    async def find_active(self, *, user_id: str, content_id: str, now: datetime) -> Optional[EntitlementRecord]:
        return await self._first(
            select(Entitlement)
            .where(Entitlement.user_id == user_id, Entitlement.content_id == content_id, _live(now))
            .order_by(Entitlement.created_at.desc())
        )

    async def find_recent_live(self, *, user_id: str, since: datetime, now: datetime) -> Optional[EntitlementRecord]:
        return await self._first(
            select(Entitlement)
            .where(Entitlement.user_id == user_id, Entitlement.created_at >= since, _live(now))
            .order_by(Entitlement.created_at.desc())
        )

    async def latest_for_pair(self, *, user_id: str, content_id: str) -> Optional[EntitlementRecord]:
        return await self._first(
            select(Entitlement)
            .where(Entitlement.user_id == user_id, Entitlement.content_id == content_id)
            .order_by(Entitlement.created_at.desc())
        )

    async def increment_strikes(self, entitlement_id: str) -> EntitlementRecord:
        # Single UPDATE so concurrent reports each land exactly once
        result = await self.session.execute(
            update(Entitlement)
            .where(Entitlement.id == entitlement_id)
            .values(strike_count=Entitlement.strike_count + 1)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        await self.session.commit()
        return await self._reload(entitlement_id)

    async def revoke(self, entitlement_id: str, *, at: datetime, strike_count: int) -> EntitlementRecord:
        result = await self.session.execute(
            update(Entitlement)
            .where(Entitlement.id == entitlement_id)
            .values(
                expires_at=at,
                strike_count=case(
                    (Entitlement.strike_count > strike_count, Entitlement.strike_count),
                    else_=strike_count,
                ),
            )
        )
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        await self.session.commit()
        return await self._reload(entitlement_id)

    async def reset_strikes(self, entitlement_id: str) -> EntitlementRecord:
        result = await self.session.execute(
            update(Entitlement).where(Entitlement.id == entitlement_id).values(strike_count=0)
        )
        if result.rowcount == 0:
            await self.session.rollback()
            raise NotFoundError("Entitlement not found", details={"entitlement_id": entitlement_id})
        await self.session.commit()
        return await self._reload(entitlement_id)

    # ── Security log ─────────────────────────────────────────────────────────
    async def add_log(self, entry: SecurityLogRecord) -> SecurityLogRecord:
        self.session.add(
            SecurityLog(
                id=entry.id,
                entitlement_id=entry.entitlement_id,
                event_type=entry.event_type,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                details=dict(entry.details or {}),
                created_at=entry.created_at,
            )
        )
        await self.session.commit()
        return entry

    async def list_logs(self, *, limit: int, offset: int, event_type: Optional[str] = None, entitlement_id: Optional[str] = None) -> List[SecurityLogRecord]:
        stmt = select(SecurityLog)
        if event_type is not None:
            stmt = stmt.where(SecurityLog.event_type == event_type)
        if entitlement_id is not None:
            stmt = stmt.where(SecurityLog.entitlement_id == entitlement_id)
        stmt = stmt.order_by(SecurityLog.created_at.desc(), SecurityLog.seq.desc()).offset(offset).limit(limit)
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_log(r) for r in rows]

    async def count_logs_since(self, since: datetime) -> Dict[str, int]:
        stmt = (
            select(SecurityLog.event_type, func.count())
            .where(SecurityLog.created_at >= since)
            .group_by(SecurityLog.event_type)
        )
        return {event_type: int(n) for event_type, n in (await self.session.execute(stmt)).all()}

    # ── Access tokens ────────────────────────────────────────────────────────
    async def add_token(self, record: AccessTokenRecord) -> AccessTokenRecord:
        self.session.add(
            AccessToken(
                token=record.token,
                content_id=record.content_id,
                user_id=record.user_id,
                expires_at=record.expires_at,
                created_at=record.created_at,
            )
        )
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise ConflictError("Access token collision") from exc
        return record

    async def get_token(self, token: str) -> Optional[AccessTokenRecord]:
        row = (await self.session.execute(select(AccessToken).where(AccessToken.token == token))).scalars().first()
        return _token(row) if row is not None else None


class SqlCatalogRepository(CatalogRepositoryProtocol):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_content(self, content_id: str) -> Optional[ContentRecord]:
        row = await self.session.get(Content, content_id)
        if row is None:
            return None
        return ContentRecord(
            id=row.id,
            kind=row.kind,
            title=row.title,
            price_cents=int(row.price_cents),
            currency=row.currency,
            storage_path=row.storage_path,
            access_duration_seconds=row.access_duration_seconds,
        )

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        row = await self.session.get(User, user_id)
        return UserRecord(id=row.id, email=row.email, is_active=bool(row.is_active)) if row else None

    async def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        needle = (email or "").strip().lower()
        if not needle:
            return None
        row = (
            await self.session.execute(select(User).where(func.lower(User.email) == needle).limit(1))
        ).scalars().first()
        return UserRecord(id=row.id, email=row.email, is_active=bool(row.is_active)) if row else None


__all__ = ["SqlEntitlementRepository", "SqlCatalogRepository"]
