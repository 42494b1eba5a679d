# tests/test_entitlements/test_reconciler.py

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import AuthenticationError, AuthorizationError, DataError, PartialReconciliationError
from app.repositories.entitlements import MemoryEntitlementRepository
from app.services.payment_provider import CheckoutSession, LineItem
from app.services.reconciler import PaymentReconciler, extract_content_ids
from tests.fixtures.stores import WEBHOOK_SECRET, webhook_body


def _session(**kwargs) -> CheckoutSession:
    kwargs.setdefault("id", "cs_1")
    kwargs.setdefault("payment_status", "paid")
    return CheckoutSession(**kwargs)


# ─────────────────────────────────────────────────────────────
# Content id extraction
# ─────────────────────────────────────────────────────────────

def test_extract_prefers_collection_ids_and_dedupes():
    s = _session(metadata={"collection_ids": json.dumps(["C1", "C2", "C1"]), "content_id": "X"})
    assert extract_content_ids(s) == ["C1", "C2"]


def test_extract_rejects_count_mismatch():
    s = _session(metadata={"collection_ids": json.dumps(["C1", "C2"]), "collection_count": "3"})
    with pytest.raises(DataError):
        extract_content_ids(s)


def test_extract_rejects_malformed_json():
    with pytest.raises(DataError):
        extract_content_ids(_session(metadata={"collection_ids": "[C1,"}))


def test_extract_single_id_keys():
    assert extract_content_ids(_session(metadata={"video_id": "V1"})) == ["V1"]
    assert extract_content_ids(_session(metadata={"collection_id": "C2"})) == ["C2"]


def test_extract_falls_back_to_line_items():
    s = _session(
        line_items=[
            LineItem(price_metadata={"collection_id": "C1"}),
            LineItem(product_metadata={"content_id": "C2"}),
            LineItem(),
        ]
    )
    assert extract_content_ids(s) == ["C1", "C2"]


def test_extract_without_any_id_is_data_error():
    with pytest.raises(DataError) as ei:
        extract_content_ids(_session())
    assert ei.value.code == "missing_content"


# ─────────────────────────────────────────────────────────────
# Webhook adapter
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_same_event_twice_yields_one_entitlement_per_item(reconciler, provider, repo):
    provider.add_session("S1", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "C2"])})

    first = await reconciler.handle_webhook(webhook_body("S1"), WEBHOOK_SECRET)
    second = await reconciler.handle_webhook(webhook_body("S1", event_id="evt_2"), WEBHOOK_SECRET)

    assert len(first.created) == 2 and first.existing == []
    assert second.created == [] and sorted(second.existing) == sorted(first.created)
    rows = await repo.list_by_session("S1")
    assert sorted(r.content_id for r in rows) == ["C1", "C2"]


@pytest.mark.anyio
async def test_amount_comes_from_catalog_price(reconciler, provider, repo):
    provider.add_session("S1", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "C2"])})
    await reconciler.handle_webhook(webhook_body("S1"), WEBHOOK_SECRET)

    by_content = {r.content_id: r for r in await repo.list_by_session("S1")}
    assert by_content["C1"].amount_paid == Decimal("19.99")
    assert by_content["C2"].amount_paid == Decimal("24.99")
    assert by_content["C1"].status == "completed" and by_content["C1"].is_active
    assert by_content["C1"].expires_at is None


@pytest.mark.anyio
async def test_timed_content_gets_expiry(reconciler, provider, repo, clock):
    provider.add_session("S9", metadata={"user_id": "U1", "video_id": "V1"})
    await reconciler.handle_webhook(webhook_body("S9"), WEBHOOK_SECRET)
    (ent,) = await repo.list_by_session("S9")
    assert (ent.expires_at - clock()).total_seconds() == 100


@pytest.mark.anyio
async def test_bad_signature_rejected_before_any_write(reconciler, provider, repo):
    provider.add_session("S1", metadata={"user_id": "U1", "content_id": "C1"})
    with pytest.raises(AuthenticationError):
        await reconciler.handle_webhook(webhook_body("S1"), "forged")
    assert await repo.list_by_session("S1") == []


@pytest.mark.anyio
async def test_other_event_types_are_ignored(reconciler, provider, repo):
    provider.add_session("S1", metadata={"user_id": "U1", "content_id": "C1"})
    result = await reconciler.handle_webhook(webhook_body("S1", event_type="charge.refunded"), WEBHOOK_SECRET)
    assert result.ignored and result.reason == "event_type"
    assert await repo.list_by_session("S1") == []


@pytest.mark.anyio
async def test_unpaid_session_is_ignored(reconciler, provider, repo):
    provider.add_session("S1", metadata={"user_id": "U1", "content_id": "C1"}, payment_status="unpaid")
    result = await reconciler.handle_webhook(webhook_body("S1"), WEBHOOK_SECRET)
    assert result.ignored and result.reason == "unpaid"


@pytest.mark.anyio
async def test_webhook_without_ids_fetches_line_items(reconciler, provider, monkeypatch):
    # Webhook payloads carry no line items; the full session has them
    event_session = provider.add_session("S1", metadata={"user_id": "U1"})
    event_session.line_items_loaded = False
    full = _session(id="S1", metadata={"user_id": "U1"}, line_items=[LineItem(price_metadata={"content_id": "C2"})])
    fetched = []

    def retrieve(session_id):
        fetched.append(session_id)
        return full

    monkeypatch.setattr(provider, "retrieve_session", retrieve)
    result = await reconciler.handle_webhook(webhook_body("S1"), WEBHOOK_SECRET)

    assert fetched == ["S1"]
    assert [e.content_id for e in result.entitlements] == ["C2"]



# ─────────────────────────────────────────────────────────────
# User resolution
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_user_resolved_by_email_case_insensitively(reconciler, provider):
    provider.add_session("S2", metadata={"content_id": "C1"}, customer_email="Viewer@Example.com")
    result = await reconciler.replay("S2")
    assert result.user_id == "U1"


@pytest.mark.anyio
async def test_unknown_explicit_user_is_data_error(reconciler, provider, repo):
    provider.add_session("S2", metadata={"user_id": "ghost", "content_id": "C1"}, customer_email="viewer@example.com")
    with pytest.raises(DataError) as ei:
        await reconciler.replay("S2")
    assert ei.value.code == "unknown_user"
    assert await repo.list_by_session("S2") == []


@pytest.mark.anyio
async def test_unresolvable_user_is_data_error(reconciler, provider):
    provider.add_session("S2", metadata={"content_id": "C1"}, customer_email="nobody@example.com")
    with pytest.raises(DataError) as ei:
        await reconciler.replay("S2")
    assert ei.value.code == "unresolved_user"


# ─────────────────────────────────────────────────────────────
# Partial failures
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_unknown_content_only_is_data_error(reconciler, provider, repo):
    provider.add_session("S3", metadata={"user_id": "U1", "content_id": "NOPE"})
    with pytest.raises(DataError) as ei:
        await reconciler.replay("S3")
    assert ei.value.code == "content_not_found"
    assert await repo.list_by_session("S3") == []


@pytest.mark.anyio
async def test_unknown_content_among_known_is_partial(reconciler, provider, repo):
    provider.add_session("S3", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "NOPE"])})
    with pytest.raises(PartialReconciliationError) as ei:
        await reconciler.replay("S3")
    assert ei.value.failed == {"NOPE": "content_not_found"}
    assert len(ei.value.created) == 1
    assert [e.content_id for e in await repo.list_by_session("S3")] == ["C1"]


class _FlakyRepo(MemoryEntitlementRepository):
    """Fails every insert for one content id until `heal()` is called."""

    def __init__(self, fail_for: str):
        super().__init__()
        self.fail_for = fail_for

    def heal(self):
        self.fail_for = None

    async def add(self, record):
        if record.content_id == self.fail_for:
            raise RuntimeError("connection reset")
        return await super().add(record)


@pytest.mark.anyio
async def test_partial_insert_failure_then_replay_completes(catalog, provider, clock):
    repo = _FlakyRepo(fail_for="C2")
    reconciler = PaymentReconciler(repo, catalog, provider, clock=clock)
    provider.add_session("S4", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "C2"])})

    with pytest.raises(PartialReconciliationError) as ei:
        await reconciler.handle_webhook(webhook_body("S4"), WEBHOOK_SECRET)
    assert ei.value.failed == {"C2": "RuntimeError"}

    repo.heal()
    result = await reconciler.replay("S4")
    assert len(result.created) == 1 and len(result.existing) == 1
    assert sorted(e.content_id for e in await repo.list_by_session("S4")) == ["C1", "C2"]


@pytest.mark.anyio
async def test_first_insert_failure_propagates(catalog, provider, clock):
    repo = _FlakyRepo(fail_for="C1")
    reconciler = PaymentReconciler(repo, catalog, provider, clock=clock)
    provider.add_session("S5", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "C2"])})
    with pytest.raises(RuntimeError):
        await reconciler.replay("S5")
    assert await repo.list_by_session("S5") == []


# ─────────────────────────────────────────────────────────────
# Verify (polling adapter)
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_verify_grants_and_mints_fresh_tokens(reconciler, provider, repo, clock):
    provider.add_session("S6", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "V1"])})

    first = await reconciler.verify("S6", client_ip="203.0.113.7")
    second = await reconciler.verify("S6")

    assert len(first.tokens) == 2 and len(second.tokens) == 2
    assert {t.token for t in first.tokens}.isdisjoint({t.token for t in second.tokens})
    assert len(await repo.list_by_session("S6")) == 2
    by_content = {t.content_id: t for t in first.tokens}
    # Token never outlives a timed grant
    assert by_content["V1"].expires_at == clock() + timedelta(seconds=100)
    assert (by_content["C1"].expires_at - clock()).total_seconds() == 30 * 60
    assert all(e.bound_ip == "203.0.113.7" for e in first.result.entitlements)


@pytest.mark.anyio
async def test_verify_unpaid_session_is_refused(reconciler, provider):
    provider.add_session("S7", metadata={"user_id": "U1", "content_id": "C1"}, payment_status="unpaid")
    with pytest.raises(AuthorizationError) as ei:
        await reconciler.verify("S7")
    assert ei.value.code == "payment_incomplete"


@pytest.mark.anyio
async def test_verify_rejects_other_users_session(reconciler, provider, repo):
    provider.add_session("S8", metadata={"user_id": "U1", "content_id": "C1"})
    with pytest.raises(AuthorizationError) as ei:
        await reconciler.verify("S8", user_id="U2")
    assert ei.value.code == "session_owner_mismatch"
    assert await repo.list_by_session("S8") == []


@pytest.mark.anyio
async def test_dry_run_plan_writes_nothing(reconciler, provider, repo):
    session = provider.add_session("S1", metadata={"user_id": "U1", "collection_ids": json.dumps(["C1", "NOPE"])})
    plan = await reconciler.plan(session)
    assert plan.user_id == "U1"
    assert [c.id for c in plan.contents] == ["C1"] and plan.missing == ["NOPE"]
    assert await repo.list_by_session("S1") == []
