# app/middleware/request_id.py
from __future__ import annotations

"""
# StreamVault — Request ID Middleware (pure ASGI)

- Reuses a client-supplied `X-Request-ID` / `X-Correlation-ID` when it is a
  safe opaque token (payment providers and proxies send their own formats).
- Generates a UUIDv4 otherwise.
- Stores it on `request.state.request_id`, echoes it on the response, and
  binds it into the **loguru** context for the lifetime of the request, so
  reconciliation and strike logs can be joined to the HTTP call.

## Env
- `REQUEST_ID_HEADER_NAME` (default: `X-Request-ID`)
- `REQUEST_ID_TRUST_CLIENT_IDS` ("true"/"false"; default: "true")
"""

import os
import re
import uuid

from loguru import logger
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER_NAME = os.getenv("REQUEST_ID_HEADER_NAME", "X-Request-ID")
TRUST_CLIENT_IDS = os.getenv("REQUEST_ID_TRUST_CLIENT_IDS", "true").lower() == "true"

# Printable, log-safe, bounded
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{7,127}$")


def is_safe_request_id(value: str) -> bool:
    return bool(_SAFE_ID_RE.fullmatch(value or ""))


class RequestIDMiddleware:
    """Attach a correlation id to every HTTP request and response."""

    def __init__(self, app: ASGIApp, header_name: str = HEADER_NAME, trust_client_ids: bool = TRUST_CLIENT_IDS) -> None:
        self.app = app
        self.header_name = header_name
        self.trust_client_ids = trust_client_ids

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        req_id = self._choose_request_id(Headers(scope=scope))
        scope.setdefault("state", {})["request_id"] = req_id
        name_bytes = self.header_name.lower().encode("latin-1")

        async def _send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = [(k, v) for (k, v) in message.get("headers", []) if k.lower() != name_bytes]
                headers.append((name_bytes, req_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        with logger.contextualize(request_id=req_id):
            await self.app(scope, receive, _send_wrapper)

    def _choose_request_id(self, headers: Headers) -> str:
        if self.trust_client_ids:
            incoming = (headers.get(self.header_name) or headers.get("X-Correlation-ID") or "").strip()
            if is_safe_request_id(incoming):
                return incoming
        return str(uuid.uuid4())


def get_request_id(request) -> str:
    """Current request id from `request.state`, or "" outside a request."""
    return getattr(getattr(request, "state", object()), "request_id", "") or ""


__all__ = ["RequestIDMiddleware", "get_request_id", "is_safe_request_id"]
