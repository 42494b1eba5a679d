# app/security_headers.py
from __future__ import annotations

"""
# StreamVault — Security Headers & CORS

Security headers and CORS wiring for a JSON-only API.

## What you get
- **Headers**: HSTS, a locked-down CSP (`default-src 'none'`), CORP/COOP,
  Referrer-Policy, X-Content-Type-Options, X-Frame-Options.
- **CORS installer**: strict allow-list from settings (localhost defaults in dev).
- **Skip list**: path prefixes (docs, metrics) that keep their own headers.
- **Cache helper**: `set_sensitive_cache()` for responses carrying tokens,
  signed URLs or client IPs.

## Quick start
    from app.security_headers import install_security, configure_cors

    app = FastAPI()
    install_security(app)
    configure_cors(app)

## Env knobs
- ENABLE_HTTPS_REDIRECT (default "false"; TLS usually terminates at the proxy)
- SECURITY_SKIP_PATHS (CSV; default "/docs,/redoc,/openapi.json,/metrics")
- FRONTEND_ORIGINS / BACKEND_CORS_ORIGINS (settings), ALLOW_ORIGINS_REGEX (single regex)
- HSTS_MAX_AGE (31536000), HSTS_INCLUDE_SUBDOMAINS ("true")
- REFERRER_POLICY (default "no-referrer"; signed URLs must not leak via Referer)
"""

import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from fastapi import Request, Response
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from app.core.config import settings


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ─────────────────────────────────────────────────────────────
# ⚙️ Configuration
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SecurityHeadersConfig:
    """Runtime configuration for security headers (env-driven)."""

    hsts_max_age: int = int(os.getenv("HSTS_MAX_AGE", "31536000"))
    hsts_include_subdomains: bool = _env_bool("HSTS_INCLUDE_SUBDOMAINS", "true")
    csp: str = os.getenv("API_CSP", "default-src 'none'; frame-ancestors 'none'")
    referrer_policy: str = os.getenv("REFERRER_POLICY", "no-referrer")
    coop: str = os.getenv("CROSS_ORIGIN_OPENER_POLICY", "same-origin")
    corp: str = os.getenv("CROSS_ORIGIN_RESOURCE_POLICY", "same-origin")
    skip_paths_csv: str = os.getenv("SECURITY_SKIP_PATHS", "/docs,/redoc,/openapi.json,/metrics")

    @property
    def hsts(self) -> str:
        value = f"max-age={self.hsts_max_age}"
        if self.hsts_include_subdomains:
            value += "; includeSubDomains"
        return value


_CFG = SecurityHeadersConfig()


# ─────────────────────────────────────────────────────────────
# 🧩 Middleware
# ─────────────────────────────────────────────────────────────

class SecurityHeadersMiddleware:
    """
    ASGI middleware that applies security headers idempotently and honours
    the `no-store` flag set by `set_sensitive_cache(request)`.
    """

    def __init__(self, app: ASGIApp, cfg: SecurityHeadersConfig = _CFG) -> None:
        self.app = app
        self.cfg = cfg
        self._skip_prefixes: Tuple[str, ...] = tuple(
            p.strip() for p in (cfg.skip_paths_csv or "").split(",") if p.strip()
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        path = scope.get("path", "")
        is_skipped = any(path.startswith(prefix) for prefix in self._skip_prefixes)
        state = scope.setdefault("state", {})

        async def send_wrapper(message):
            if message.get("type") == "http.response.start":
                raw_headers: List[Tuple[bytes, bytes]] = message.setdefault("headers", [])  # type: ignore[assignment]
                if not is_skipped:
                    _apply_headers_to_raw(raw_headers, self.cfg)
                if state.get("_sensitive_cache"):
                    _apply_no_store_to_raw(raw_headers)
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _has_header(raw_headers: List[Tuple[bytes, bytes]], name: str) -> bool:
    lname = name.lower().encode("latin-1")
    return any(h[0].lower() == lname for h in raw_headers)


def _ensure(raw_headers: List[Tuple[bytes, bytes]], name: str, value: str) -> None:
    if not _has_header(raw_headers, name):
        raw_headers.append((name.encode("latin-1"), value.encode("latin-1")))


def _apply_headers_to_raw(raw_headers: List[Tuple[bytes, bytes]], cfg: SecurityHeadersConfig) -> None:
    _ensure(raw_headers, "Strict-Transport-Security", cfg.hsts)
    _ensure(raw_headers, "X-Content-Type-Options", "nosniff")
    _ensure(raw_headers, "X-Frame-Options", "DENY")
    _ensure(raw_headers, "Referrer-Policy", cfg.referrer_policy)
    _ensure(raw_headers, "Cross-Origin-Opener-Policy", cfg.coop)
    _ensure(raw_headers, "Cross-Origin-Resource-Policy", cfg.corp)
    _ensure(raw_headers, "Content-Security-Policy", cfg.csp)


def _apply_no_store_to_raw(raw_headers: List[Tuple[bytes, bytes]]) -> None:
    _ensure(raw_headers, "Cache-Control", "no-store")
    _ensure(raw_headers, "Pragma", "no-cache")
    _ensure(raw_headers, "Expires", "0")


# ─────────────────────────────────────────────────────────────
# 🔓 Public helpers
# ─────────────────────────────────────────────────────────────

def set_sensitive_cache(target: Union[Response, Request]) -> None:
    """
    Mark a **Response** or **Request** as uncacheable.

    - `Response`: headers are set immediately (idempotent).
    - `Request`: sets a flag read by the middleware at response start.
    """
    if isinstance(target, Response):
        target.headers.setdefault("Cache-Control", "no-store")
        target.headers.setdefault("Pragma", "no-cache")
        target.headers.setdefault("Expires", "0")
        return

    if isinstance(target, Request):
        target.state._sensitive_cache = True
        return

    raise TypeError("set_sensitive_cache expects a Response or Request")


# ─────────────────────────────────────────────────────────────
# 🌐 CORS installer (allow-list, not '*')
# ─────────────────────────────────────────────────────────────

def configure_cors(
    app,
    *,
    allow_credentials: bool = True,
    allow_methods: Optional[Iterable[str]] = None,
    allow_headers: Optional[Iterable[str]] = None,
) -> None:
    """Install strict CORS based on env configuration."""
    allow_methods = allow_methods or ["GET", "HEAD", "OPTIONS", "POST"]
    allow_headers = allow_headers or [
        "Authorization",
        "Content-Type",
        "X-Request-ID",
    ]

    origins = settings.frontend_origins_list
    origins_regex = os.getenv("ALLOW_ORIGINS_REGEX", "").strip() or None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=origins_regex,
        allow_credentials=allow_credentials,
        allow_methods=list(allow_methods),
        allow_headers=list(allow_headers),
        expose_headers=["Retry-After", "X-Request-ID"],
        max_age=3600,
    )


# ─────────────────────────────────────────────────────────────
# 🔐 HTTPS redirect + headers middleware
# ─────────────────────────────────────────────────────────────

def install_security(app) -> None:
    """Add HTTPS redirect (optional) and the security headers middleware."""
    if _env_bool("ENABLE_HTTPS_REDIRECT", "false"):
        app.add_middleware(HTTPSRedirectMiddleware)

    app.add_middleware(SecurityHeadersMiddleware, cfg=_CFG)


__all__ = [
    "SecurityHeadersConfig",
    "SecurityHeadersMiddleware",
    "install_security",
    "configure_cors",
    "set_sensitive_cache",
]
