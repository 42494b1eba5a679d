# tests/test_db/test_sql_repository.py

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import ConflictError, NotFoundError
from app.repositories.entitlements import AccessTokenRecord, EntitlementRecord, SecurityLogRecord
from app.repositories.sql import SqlCatalogRepository, SqlEntitlementRepository
from app.services.access import AccessResolver
from app.services.strikes import StrikeTracker


def _record(clock, *, id="E1", user_id="U1", content_id="C1", session="S1", expires_at=None, status="completed"):
    return EntitlementRecord(
        id=id,
        user_id=user_id,
        content_id=content_id,
        payment_session_id=session,
        amount_paid=Decimal("19.99"),
        currency="usd",
        status=status,
        is_active=True,
        created_at=clock(),
        expires_at=expires_at,
    )


# ─────────────────────────────────────────────────────────────
# Entitlements
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_add_and_get_roundtrip(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock, expires_at=clock() + timedelta(seconds=100)))

    got = await repo.get("E1")
    assert got.user_id == "U1" and got.content_id == "C1"
    assert got.amount_paid == Decimal("19.99")
    assert got.created_at == clock()
    assert got.expires_at == clock() + timedelta(seconds=100)
    assert got.created_at.tzinfo is not None


@pytest.mark.anyio
async def test_duplicate_key_is_conflict_with_existing_id(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))
    with pytest.raises(ConflictError) as ei:
        await repo.add(_record(clock, id="E-other"))
    assert ei.value.details == {"entitlement_id": "E1"}
    assert len(await repo.list_by_session("S1")) == 1


@pytest.mark.anyio
async def test_same_content_in_another_session_is_allowed(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))
    await repo.add(_record(clock, id="E2", session="S2"))
    assert (await repo.get("E2")).payment_session_id == "S2"


@pytest.mark.anyio
async def test_list_by_session_filters(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock, id="E1", content_id="C1"))
    await repo.add(_record(clock, id="E2", content_id="C2"))
    await repo.add(_record(clock, id="E3", user_id="U2", content_id="C1"))

    assert {r.id for r in await repo.list_by_session("S1")} == {"E1", "E2", "E3"}
    assert {r.id for r in await repo.list_by_session("S1", user_id="U1")} == {"E1", "E2"}
    assert [r.id for r in await repo.list_by_session("S1", user_id="U1", content_id="C2")] == ["E2"]


@pytest.mark.anyio
async def test_access_tiers_against_sql(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    resolver = AccessResolver(repo, clock=clock, recent_window=timedelta(minutes=30))

    await repo.add(_record(clock, id="E1", content_id="C1", status="pending"))
    assert (await resolver.has_access("U1", "C1")).tier == 2

    await repo.add(_record(clock, id="E2", content_id="C2", session="S2"))
    assert (await resolver.has_access("U1", "C2")).tier == 1
    assert (await resolver.has_access("U1", "V1")).tier == 3

    clock.advance(minutes=45)
    assert (await resolver.has_access("U1", "V1")).has_access is False


@pytest.mark.anyio
async def test_strike_counter_and_revocation(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))

    assert (await repo.increment_strikes("E1")).strike_count == 1
    assert (await repo.increment_strikes("E1")).strike_count == 2

    revoked = await repo.revoke("E1", at=clock(), strike_count=3)
    assert revoked.strike_count == 3
    assert revoked.expires_at == clock()
    assert revoked.is_active is True

    reset = await repo.reset_strikes("E1")
    assert reset.strike_count == 0


@pytest.mark.anyio
async def test_revoke_keeps_higher_counter(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))
    for _ in range(4):
        await repo.increment_strikes("E1")
    assert (await repo.revoke("E1", at=clock(), strike_count=3)).strike_count == 4


@pytest.mark.anyio
async def test_mutators_reject_unknown_ids(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    with pytest.raises(NotFoundError):
        await repo.increment_strikes("missing")
    with pytest.raises(NotFoundError):
        await repo.revoke("missing", at=clock(), strike_count=3)
    with pytest.raises(NotFoundError):
        await repo.reset_strikes("missing")


# ─────────────────────────────────────────────────────────────
# Security log
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_logs_newest_first_with_filters_and_counts(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))
    for i, event_type in enumerate(["screenshot_detected", "devtools_detected", "screenshot_detected"]):
        await repo.add_log(SecurityLogRecord(
            id=f"L{i}",
            entitlement_id="E1",
            event_type=event_type,
            created_at=clock(),
            ip_address="198.51.100.4",
            details={"n": i},
        ))
        clock.advance(seconds=1)

    rows = await repo.list_logs(limit=10, offset=0)
    assert [r.id for r in rows] == ["L2", "L1", "L0"]
    assert rows[0].details == {"n": 2}

    shots = await repo.list_logs(limit=1, offset=1, event_type="screenshot_detected")
    assert [r.id for r in shots] == ["L0"]

    counts = await repo.count_logs_since(clock() - timedelta(hours=24))
    assert counts == {"screenshot_detected": 2, "devtools_detected": 1}


@pytest.mark.anyio
async def test_logs_written_in_same_instant_page_in_insertion_order(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    await repo.add(_record(clock))
    # ids deliberately sort against insertion order
    for log_id, event_type in [("Lz", "screenshot_detected"), ("La", "access_revoked")]:
        await repo.add_log(SecurityLogRecord(
            id=log_id,
            entitlement_id="E1",
            event_type=event_type,
            created_at=clock(),
        ))

    first = await repo.list_logs(limit=1, offset=0)
    second = await repo.list_logs(limit=1, offset=1)
    assert [r.id for r in first + second] == ["La", "Lz"]


@pytest.mark.anyio
async def test_tracker_end_to_end_on_sql(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    tracker = StrikeTracker(repo, clock=clock, threshold=3)
    await repo.add(_record(clock))

    reasons = []
    for _ in range(3):
        reasons.append((await tracker.report("E1", "screenshot_detected")).reason)
        clock.advance(seconds=1)

    assert reasons == ["warning", "final_warning", "strike_limit_reached"]
    page = await tracker.list_logs(entitlement_id="E1")
    assert sorted(e.event_type for e in page.entries) == ["access_revoked"] + ["screenshot_detected"] * 3


# ─────────────────────────────────────────────────────────────
# Access tokens + catalog
# ─────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_tokens_roundtrip_and_collision(db_session, clock):
    repo = SqlEntitlementRepository(db_session)
    record = AccessTokenRecord(token="tok-1", content_id="C1", user_id="U1", expires_at=clock() + timedelta(minutes=30), created_at=clock())
    await repo.add_token(record)

    got = await repo.get_token("tok-1")
    assert got.user_id == "U1" and got.expires_at == record.expires_at
    assert await repo.get_token("nope") is None

    with pytest.raises(ConflictError):
        await repo.add_token(record)


@pytest.mark.anyio
async def test_catalog_lookups(db_session):
    catalog = SqlCatalogRepository(db_session)

    content = await catalog.get_content("V1")
    assert content.access_duration_seconds == 100
    assert content.storage_path == "videos/v1.mp4"
    assert await catalog.get_content("missing") is None

    assert (await catalog.get_user("U2")).email == "other@example.com"
    assert (await catalog.find_user_by_email("  VIEWER@example.com ")).id == "U1"
    assert await catalog.find_user_by_email("") is None
