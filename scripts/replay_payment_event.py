#!/usr/bin/env python3
"""
StreamVault • Replay a Payment Session
======================================

Re-run reconciliation for a checkout session the webhook missed or only
partially applied. The session is fetched from the payment provider, so the
outcome is the same as a redelivered webhook: existing entitlements are left
alone, missing ones are created.

Usage
-----
    python scripts/replay_payment_event.py cs_test_a1b2c3
    python scripts/replay_payment_event.py cs_test_a1b2c3 --dry-run

`--dry-run` resolves the purchaser and content items and prints them without
writing anything. Exit status is 0 on success, 1 on a reconciliation error.
"""

import argparse
import asyncio
import json
import sys
from datetime import timedelta

from app.core.config import settings
from app.core.exceptions import AppException
from app.core.logger import logger
from app.db.session import session_scope
from app.repositories.sql import SqlCatalogRepository, SqlEntitlementRepository
from app.services.reconciler import PaymentReconciler
from app.services.stripe_provider import StripePaymentProvider


async def replay(session_id: str, *, dry_run: bool = False) -> dict:
    provider = StripePaymentProvider()
    async with session_scope() as db:
        reconciler = PaymentReconciler(
            SqlEntitlementRepository(db),
            SqlCatalogRepository(db),
            provider,
            access_token_ttl=timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES),
            default_currency=settings.DEFAULT_CURRENCY,
        )
        if dry_run:
            session = await reconciler.fetch_session(session_id)
            plan = await reconciler.plan(session)
            return {
                "sessionId": plan.session_id,
                "paid": session.is_paid,
                "userId": plan.user_id,
                "contentIds": [c.id for c in plan.contents],
                "missing": plan.missing,
            }

        result = await reconciler.replay(session_id)
        return {
            "sessionId": result.session_id,
            "userId": result.user_id,
            "ignored": result.ignored,
            "reason": result.reason,
            "created": result.created,
            "existing": result.existing,
        }


def main() -> None:
    ap = argparse.ArgumentParser(description="Replay reconciliation for a payment session")
    ap.add_argument("session_id", help="Checkout session id, e.g. cs_test_...")
    ap.add_argument("--dry-run", action="store_true", help="Resolve the session without writing entitlements")
    args = ap.parse_args()

    try:
        summary = asyncio.run(replay(args.session_id, dry_run=args.dry_run))
    except AppException as exc:
        logger.error("Replay of {} failed: {} ({})", args.session_id, exc.message, exc.code)
        print(json.dumps(exc.to_problem(), default=str), file=sys.stderr)
        sys.exit(1)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
