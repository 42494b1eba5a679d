"""
StreamVault • Payment Webhooks
==============================

- POST /webhooks/payments → verify the provider signature and reconcile a
  completed checkout into entitlements

Delivery semantics
------------------
- 200 `{received: true}` for processed, duplicate and ignored events; the
  provider stops redelivering.
- 401 on a missing/invalid signature; the body is never processed.
- 5xx on partial or upstream failure so the provider redelivers the whole
  event. Reconciliation is idempotent, so redelivery is safe.
- Exempt from rate limiting (provider retries are bursty by nature).
"""

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_reconciler
from app.core.limiter import rate_limit_exempt
from app.core.logger import logger
from app.schemas.entitlements import WebhookAck
from app.services.reconciler import PaymentReconciler

router = APIRouter(tags=["Payments"])

SIGNATURE_HEADER = "stripe-signature"


@router.post(
    "/webhooks/payments",
    response_model=WebhookAck,
    summary="Payment provider webhook",
    responses={401: {"description": "Invalid signature"}, 500: {"description": "Partial reconciliation"}},
)
@rate_limit_exempt()
async def payment_webhook(
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> WebhookAck:
    payload = await request.body()
    result = await reconciler.handle_webhook(payload, request.headers.get(SIGNATURE_HEADER))
    if not result.ignored:
        logger.info(
            "Webhook reconciled session {} (created={}, existing={})",
            result.session_id, len(result.created), len(result.existing),
        )
    return WebhookAck(
        session_id=result.session_id or None,
        ignored=result.ignored,
        reason=result.reason,
        created=len(result.created),
        existing=len(result.existing),
    )


__all__ = ["router"]
