from __future__ import annotations

"""
Payment event reconciler.

Turns a paid checkout session into exactly one completed, active entitlement
per `(user_id, content_id, payment_session_id)`. Three adapters feed it and
all converge on the same end state:

- the provider webhook (`handle_webhook`)
- the manual replay tool (`replay`)
- the client's post-checkout polling call (`verify`), which also mints
  fresh access tokens

Idempotency rests on the storage uniqueness constraint: a duplicate insert
comes back as `ConflictError` and is counted as "existing", never as a
failure. Nothing is retried inside a call; redelivery or replay is external.
"""

import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from anyio import to_thread

from app.core import metrics
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DataError,
    PartialReconciliationError,
)
from app.core.logger import logger
from app.repositories.catalog import CatalogRepositoryProtocol, ContentRecord
from app.repositories.entitlements import (
    AccessTokenRecord,
    EntitlementRecord,
    EntitlementRepositoryProtocol,
)
from app.db.base_class import new_id
from app.services.payment_provider import CheckoutSession, PaymentProvider
from app.utils.clock import Clock, utcnow

# Single-item metadata keys accepted when `collection_ids` is absent
_SINGLE_ID_KEYS = ("content_id", "collection_id", "video_id")
_LINE_ITEM_KEYS = ("collection_id", "content_id")
_USER_ID_KEYS = ("user_id", "userId")

_CENTS = Decimal("0.01")


@dataclass
class ReconcilePlan:
    """Everything resolved from a session before any write."""
    session_id: str
    user_id: str
    contents: List[ContentRecord]
    missing: List[str] = field(default_factory=list)


@dataclass
class ReconcileResult:
    session_id: str
    user_id: Optional[str] = None
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    entitlements: List[EntitlementRecord] = field(default_factory=list)
    ignored: bool = False
    reason: Optional[str] = None


@dataclass
class VerifyResult:
    result: ReconcileResult
    tokens: List[AccessTokenRecord]


# ─────────────────────────────────────────────────────────────────────────────
# Session → ids
# ─────────────────────────────────────────────────────────────────────────────

def _dedupe(ids: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for cid in ids:
        if cid and cid not in seen:
            seen[cid] = None
    return list(seen)


def extract_content_ids(session: CheckoutSession) -> List[str]:
    """Content ids for a session.

    Order of preference: `metadata.collection_ids` (JSON array, checked
    against `collection_count` when present), a single-id metadata key, then
    per-line-item metadata on the price or its product. Raises `DataError`
    when none yields an id.
    """
    meta = session.metadata or {}

    raw = meta.get("collection_ids")
    if raw:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise DataError("collection_ids is not valid JSON", details={"session_id": session.id}) from e
        if not isinstance(parsed, list) or not all(isinstance(x, (str, int)) for x in parsed):
            raise DataError("collection_ids must be a JSON array of ids", details={"session_id": session.id})
        ids = [str(x).strip() for x in parsed]
        count = meta.get("collection_count")
        if count is not None:
            try:
                expected = int(count)
            except ValueError as e:
                raise DataError("collection_count is not an integer", details={"session_id": session.id}) from e
            if expected != len(ids):
                raise DataError(
                    "collection_count does not match collection_ids",
                    details={"session_id": session.id, "collection_count": expected, "received": len(ids)},
                )
        ids = _dedupe(ids)
        if ids:
            return ids

    for key in _SINGLE_ID_KEYS:
        value = (meta.get(key) or "").strip()
        if value:
            return [value]

    ids = []
    for item in session.line_items:
        for source in (item.price_metadata, item.product_metadata):
            value = next((source[k].strip() for k in _LINE_ITEM_KEYS if (source.get(k) or "").strip()), None)
            if value:
                ids.append(value)
                break
    ids = _dedupe(ids)
    if not ids:
        raise DataError("No content ids on payment session", code="missing_content", details={"session_id": session.id})
    return ids


def _has_metadata_ids(session: CheckoutSession) -> bool:
    meta = session.metadata or {}
    return bool(meta.get("collection_ids")) or any((meta.get(k) or "").strip() for k in _SINGLE_ID_KEYS)


# ─────────────────────────────────────────────────────────────────────────────
# Reconciler
# ─────────────────────────────────────────────────────────────────────────────

class PaymentReconciler:
    def __init__(
        self,
        repo: EntitlementRepositoryProtocol,
        catalog: CatalogRepositoryProtocol,
        provider: PaymentProvider,
        *,
        clock: Clock = utcnow,
        access_token_ttl: timedelta = timedelta(minutes=30),
        default_currency: str = "usd",
    ) -> None:
        self.repo = repo
        self.catalog = catalog
        self.provider = provider
        self.clock = clock
        self.access_token_ttl = access_token_ttl
        self.default_currency = default_currency.lower()

    async def fetch_session(self, session_id: str) -> CheckoutSession:
        # Provider SDKs block; keep the event loop free
        return await to_thread.run_sync(self.provider.retrieve_session, session_id)

    # ── Adapters ─────────────────────────────────────────────────────────────
    async def handle_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        *,
        client_ip: Optional[str] = None,
    ) -> ReconcileResult:
        """Verify, filter, and reconcile one webhook delivery."""
        event = self.provider.parse_event(payload, signature)
        log = logger.bind(event_id=event.id, event_type=event.type)

        if not event.is_checkout_completed or event.session is None:
            log.debug("Ignoring payment event")
            metrics.inc_reconciliation("webhook", "ignored")
            return ReconcileResult(session_id=event.session.id if event.session else "", ignored=True, reason="event_type")

        session = event.session
        if not session.is_paid:
            log.info("Checkout {} not paid (status={}); ignoring", session.id, session.payment_status)
            metrics.inc_reconciliation("webhook", "ignored")
            return ReconcileResult(session_id=session.id, ignored=True, reason="unpaid")

        if not _has_metadata_ids(session) and not session.line_items_loaded:
            # Webhook payloads omit line items; fetch them
            session = await self.fetch_session(session.id)

        return await self.reconcile(session, source="webhook", client_ip=client_ip)

    async def replay(self, session_id: str) -> ReconcileResult:
        """Manual replay: fetch the session from the provider and reconcile it."""
        session = await self.fetch_session(session_id)
        if not session.is_paid:
            logger.info("Replay of {} skipped: payment_status={}", session_id, session.payment_status)
            metrics.inc_reconciliation("replay", "ignored")
            return ReconcileResult(session_id=session_id, ignored=True, reason="unpaid")
        return await self.reconcile(session, source="replay")

    async def verify(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> VerifyResult:
        """Polling adapter: reconcile a paid session and mint access tokens."""
        session = await self.fetch_session(session_id)
        if not session.is_paid:
            raise AuthorizationError("Payment not completed", code="payment_incomplete", details={"session_id": session_id})

        plan = await self.plan(session)
        if user_id is not None and plan.user_id != user_id:
            raise AuthorizationError(
                "Payment session belongs to another account",
                code="session_owner_mismatch",
                user_id=user_id,
            )

        result = await self.apply(plan, source="verify", client_ip=client_ip)
        tokens = await self.mint_tokens(result.entitlements)
        return VerifyResult(result=result, tokens=tokens)

    async def mint_tokens(self, entitlements: List[EntitlementRecord]) -> List[AccessTokenRecord]:
        """One fresh token per live entitlement; lifetime never outlasts the grant."""
        now = self.clock()
        tokens: List[AccessTokenRecord] = []
        for ent in entitlements:
            if not ent.is_live(now):
                continue
            expires_at = now + self.access_token_ttl
            if ent.expires_at is not None and ent.expires_at < expires_at:
                expires_at = ent.expires_at
            record = AccessTokenRecord(
                token=secrets.token_urlsafe(32),
                content_id=ent.content_id,
                user_id=ent.user_id,
                expires_at=expires_at,
                created_at=now,
            )
            tokens.append(await self.repo.add_token(record))
            metrics.inc_token_minted()
        return tokens

    # ── Core ─────────────────────────────────────────────────────────────────
    async def resolve_user(self, session: CheckoutSession) -> str:
        meta = session.metadata or {}
        explicit = next(((meta.get(k) or "").strip() for k in _USER_ID_KEYS if (meta.get(k) or "").strip()), None)
        if explicit:
            user = await self.catalog.get_user(explicit)
            if user is None:
                raise DataError("Unknown user on payment session", code="unknown_user", details={"session_id": session.id})
            return user.id

        if session.customer_email:
            user = await self.catalog.find_user_by_email(session.customer_email)
            if user is not None:
                return user.id

        raise DataError("Unable to resolve purchaser", code="unresolved_user", details={"session_id": session.id})

    async def plan(self, session: CheckoutSession) -> ReconcilePlan:
        """Resolve user, content ids and prices without writing anything."""
        content_ids = extract_content_ids(session)
        user_id = await self.resolve_user(session)

        contents: List[ContentRecord] = []
        missing: List[str] = []
        for cid in content_ids:
            content = await self.catalog.get_content(cid)
            if content is None:
                missing.append(cid)
            else:
                contents.append(content)
        return ReconcilePlan(session_id=session.id, user_id=user_id, contents=contents, missing=missing)

    async def reconcile(
        self,
        session: CheckoutSession,
        *,
        source: str = "webhook",
        client_ip: Optional[str] = None,
    ) -> ReconcileResult:
        return await self.apply(await self.plan(session), source=source, client_ip=client_ip)

    async def apply(
        self,
        plan: ReconcilePlan,
        *,
        source: str = "webhook",
        client_ip: Optional[str] = None,
    ) -> ReconcileResult:
        log = logger.bind(session_id=plan.session_id, user_id=plan.user_id, source=source)
        now = self.clock()
        result = ReconcileResult(session_id=plan.session_id, user_id=plan.user_id)
        failed: Dict[str, str] = {cid: "content_not_found" for cid in plan.missing}

        for content in plan.contents:
            record = EntitlementRecord(
                id=new_id(),
                user_id=plan.user_id,
                content_id=content.id,
                payment_session_id=plan.session_id,
                amount_paid=(Decimal(content.price_cents) / 100).quantize(_CENTS),
                currency=(content.currency or self.default_currency).lower(),
                status="completed",
                is_active=True,
                created_at=now,
                expires_at=(
                    now + timedelta(seconds=content.access_duration_seconds)
                    if content.access_duration_seconds
                    else None
                ),
                strike_count=0,
                bound_ip=client_ip,
            )
            try:
                await self.repo.add(record)
            except ConflictError as dup:
                existing_id = (dup.details or {}).get("entitlement_id")
                result.existing.append(existing_id or content.id)
                continue
            except Exception as e:
                failed[content.id] = type(e).__name__
                log.exception("Entitlement insert failed for content {}", content.id)
                if not (result.created or result.existing):
                    metrics.inc_reconciliation(source, "failed")
                    raise
                break
            result.created.append(record.id)

        if result.created:
            metrics.inc_entitlement_created(len(result.created))

        if failed:
            if not (result.created or result.existing):
                metrics.inc_reconciliation(source, "failed")
                log.error("Reconciliation failed: {}", failed)
                raise DataError(
                    "Payment session references unknown content",
                    code="content_not_found",
                    details={"session_id": plan.session_id, "failed": failed},
                )
            metrics.inc_reconciliation(source, "partial")
            log.error("Partial reconciliation: created={} failed={}", result.created, failed)
            raise PartialReconciliationError(
                session_id=plan.session_id,
                created=result.created,
                failed=failed,
            )

        result.entitlements = await self.repo.list_by_session(plan.session_id, user_id=plan.user_id)
        outcome = "created" if result.created else "duplicate"
        metrics.inc_reconciliation(source, outcome)
        log.info("Reconciled session: created={} existing={}", len(result.created), len(result.existing))
        return result


__all__ = [
    "PaymentReconciler",
    "ReconcilePlan",
    "ReconcileResult",
    "VerifyResult",
    "extract_content_ids",
]
