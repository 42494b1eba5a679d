# app/core/exceptions.py
from __future__ import annotations

"""
StreamVault — Application Exceptions
====================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and integrate cleanly with the problem+json
shape rendered by `app.core.exception_handlers`.

Entitlement taxonomy
--------------------
Every failure of the entitlement subsystem is one of these, so adapters never
have to guess at status codes:

    AuthenticationError         401  bad/missing signature or credential (never retried)
    AuthorizationError          403  no valid entitlement ("Purchase required")
    ExpiryError                 403  entitlement/token lapsed (distinct code → re-authorize)
    NotFoundError               404  unknown entitlement / session / token
    ConflictError               409  duplicate event (the reconciler treats it as success)
    DataError                   422  missing metadata, unknown user, unknown content
    PartialReconciliationError  500  multi-item session failed part-way; redeliver
    UpstreamError               503  storage signer or payment provider failure (retryable)

Usage
-----
    raise AuthorizationError()
    raise ExpiryError("Token expired", details={"expired_at": ts})
"""

from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "EntitlementError",
    "AuthenticationError",
    "AuthorizationError",
    "ExpiryError",
    "NotFoundError",
    "ConflictError",
    "DataError",
    "PartialReconciliationError",
    "UpstreamError",
]


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code (e.g., 400/401/403/404/409/422/500).
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : str | int
        Stable machine-readable error code. Defaults to `status_code`.
    details : dict | list | str | None
        Machine-readable details (e.g., ids, constraints).
    extra : dict | None
        Additional non-sensitive metadata to surface to clients.
    headers : dict | None
        Optional headers (e.g., `{"Retry-After": "5"}`).
    """

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: Optional[Any] = None,
        request_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: Any = code if code is not None else status_code
        self.message: str = message
        self.request_id: Optional[str] = request_id
        self.user_id: Optional[str] = user_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.status_code}, {self.code}): {self.message}"

    # ── [Helper] Canonical body used by handlers ───────────────────────────
    def to_problem(self, *, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return a dict matching our problem-like JSON shape."""
        body: Dict[str, Any] = {
            "error": True,
            "message": self.message,
            "code": self.code,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if self.details is not None:
            body["details"] = self.details
        # Avoid leaking obvious secrets if someone passed them in `extra`.
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "password", "secret", "signed_url"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 🎟️ Entitlement taxonomy
# ──────────────────────────────────────────────────────────────
class EntitlementError(AppException):
    """Base for entitlement-subsystem errors; subclasses pin status and code."""

    status: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Entitlement error"
    default_code: str = "entitlement_error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        user_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            status_code=self.status,
            message=message or self.default_message,
            code=code or self.default_code,
            details=details,
            headers=headers,
            user_id=user_id,
        )


class AuthenticationError(EntitlementError):
    status = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"
    default_code = "authentication_failed"


class AuthorizationError(EntitlementError):
    """No entitlement grants the requested content; clients should offer purchase."""

    status = status.HTTP_403_FORBIDDEN
    default_message = "Purchase required"
    default_code = "purchase_required"


class ExpiryError(EntitlementError):
    """An entitlement or token existed but has lapsed (or was revoked)."""

    status = status.HTTP_403_FORBIDDEN
    default_message = "Access expired"
    default_code = "access_expired"


class NotFoundError(EntitlementError):
    status = status.HTTP_404_NOT_FOUND
    default_message = "Not found"
    default_code = "not_found"


class ConflictError(EntitlementError):
    status = status.HTTP_409_CONFLICT
    default_message = "Already processed"
    default_code = "duplicate"


class DataError(EntitlementError):
    status = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid or incomplete payment data"
    default_code = "invalid_data"


class UpstreamError(EntitlementError):
    """A storage or payment-provider call failed; the caller may retry."""

    status = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Upstream service unavailable"
    default_code = "upstream_unavailable"

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 5, **kwargs: Any) -> None:
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("Retry-After", str(int(retry_after)))
        super().__init__(message, headers=headers, **kwargs)


class PartialReconciliationError(EntitlementError):
    """Some items of a multi-item session were granted, others failed."""

    status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Payment session only partially reconciled"
    default_code = "partial_reconciliation"

    def __init__(
        self,
        *,
        session_id: str,
        created: Sequence[str],
        failed: Dict[str, str],
        message: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self.created: List[str] = list(created)
        self.failed: Dict[str, str] = dict(failed)
        super().__init__(
            message,
            details={
                "session_id": session_id,
                "created": self.created,
                "failed": self.failed,
            },
        )
