from __future__ import annotations

"""
Pydantic models for the entitlement, streaming and security endpoints.

Responses are serialized with camelCase aliases; requests accept camelCase
and snake_case alike.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


ReportableEvent = Literal[
    "screenshot_detected",
    "screen_capture_detected",
    "devtools_detected",
    "recording_detected",
]


# -- Entitlements ---------------------------------------------------------------

class EntitlementOut(CamelModel):
    id: str
    user_id: str
    content_id: str
    payment_session_id: str
    amount_paid: float
    currency: str
    status: str
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None
    strike_count: int = 0


class AccessTokenOut(CamelModel):
    token: str
    content_id: str
    expires_at: datetime


# -- Payments -------------------------------------------------------------------

class WebhookAck(CamelModel):
    received: bool = True
    session_id: Optional[str] = None
    ignored: bool = False
    reason: Optional[str] = None
    created: int = 0
    existing: int = 0


class VerifyPurchaseResponse(CamelModel):
    success: bool = True
    session_id: str
    user_id: str
    created: int = 0
    entitlements: List[EntitlementOut] = Field(default_factory=list)
    tokens: List[AccessTokenOut] = Field(default_factory=list)


# -- Access ---------------------------------------------------------------------

class AccessCheckRequest(CamelModel):
    content_id: str = Field(..., min_length=1, max_length=64)
    user_id: Optional[str] = Field(default=None, max_length=64)


class AccessCheckResponse(CamelModel):
    has_access: bool
    tier: Optional[int] = None
    entitlement: Optional[EntitlementOut] = None


class SignedUrlResponse(CamelModel):
    signed_url: str
    expires_at: datetime
    ttl_seconds: int
    refresh_after_seconds: int


# -- Strikes --------------------------------------------------------------------

class StrikeReportRequest(CamelModel):
    event_type: ReportableEvent
    entitlement_id: Optional[str] = Field(default=None, max_length=64)
    session_id: Optional[str] = Field(default=None, max_length=255)
    content_id: Optional[str] = Field(default=None, max_length=64)
    token: Optional[str] = Field(default=None, max_length=128)
    details: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _needs_target(self) -> "StrikeReportRequest":
        if not self.entitlement_id and not self.session_id:
            raise ValueError("entitlementId or sessionId is required")
        return self


class StrikeReportResponse(CamelModel):
    entitlement_id: str
    strike_count: int
    threshold: int
    revoked: bool
    final_warning: bool
    reason: str
    state: str


# -- Admin ----------------------------------------------------------------------

class AdminSecurityAction(CamelModel):
    action: Literal["revoke_access", "reset_strikes"]
    entitlement_id: str = Field(..., min_length=1, max_length=64)
    reason: Optional[str] = Field(default=None, max_length=500)


class AdminSecurityResponse(CamelModel):
    success: bool = True
    action: str
    state: str
    entitlement: EntitlementOut


class SecurityLogOut(CamelModel):
    id: str
    entitlement_id: str
    event_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SecurityLogSummary(CamelModel):
    total_events_24h: int = Field(alias="totalEvents24h")
    event_counts: Dict[str, int]


class Pagination(CamelModel):
    limit: int
    offset: int
    has_more: bool


class SecurityLogPage(CamelModel):
    logs: List[SecurityLogOut]
    summary: SecurityLogSummary
    pagination: Pagination


__all__ = [
    "EntitlementOut",
    "AccessTokenOut",
    "WebhookAck",
    "VerifyPurchaseResponse",
    "AccessCheckRequest",
    "AccessCheckResponse",
    "SignedUrlResponse",
    "StrikeReportRequest",
    "StrikeReportResponse",
    "AdminSecurityAction",
    "AdminSecurityResponse",
    "SecurityLogOut",
    "SecurityLogSummary",
    "Pagination",
    "SecurityLogPage",
]
