"""
StreamVault • Purchase verification
===================================

- GET /purchases/verify?session_id=… → post-checkout polling call

Runs the same reconciliation as the webhook (so whichever lands first wins
and the other is a no-op), then mints a fresh access token per granted item
for the e-mail / anonymous watch flow. A signed-in caller may only verify
their own session. Responses are `no-store`.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from app.api.deps import get_optional_user_id, get_reconciler
from app.api.http_utils import get_client_ip, json_no_store, sanitize_id
from app.core.limiter import rate_limit
from app.schemas.entitlements import AccessTokenOut, EntitlementOut, VerifyPurchaseResponse
from app.services.reconciler import PaymentReconciler

router = APIRouter(tags=["Payments"])


@router.get(
    "/purchases/verify",
    response_model=VerifyPurchaseResponse,
    summary="Verify a checkout session and grant access",
)
@rate_limit("20/minute")
async def verify_purchase(
    request: Request,
    response: Response,
    session_id: str = Query(..., min_length=1, max_length=255),
    user_id: Optional[str] = Depends(get_optional_user_id),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    session_id = sanitize_id(session_id, "session_id")
    outcome = await reconciler.verify(session_id, user_id=user_id, client_ip=get_client_ip(request))
    body = VerifyPurchaseResponse(
        session_id=outcome.result.session_id,
        user_id=outcome.result.user_id or "",
        created=len(outcome.result.created),
        entitlements=[EntitlementOut.model_validate(e) for e in outcome.result.entitlements],
        tokens=[AccessTokenOut.model_validate(t) for t in outcome.tokens],
    )
    return json_no_store(body, response=response)


__all__ = ["router"]
