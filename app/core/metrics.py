from __future__ import annotations

"""Prometheus metrics for entitlements, signing and abuse reports.

Call sites use the small `inc_*` / `observe_*` helpers rather than touching
collectors directly. Label values are small closed sets (source/result/outcome/event type); never
put ids or URLs in labels.
"""

from prometheus_client import Counter, Histogram

signed_urls_total = Counter(
    "streaming_signed_urls_total",
    "Signed media URL issuance attempts",
    labelnames=("source", "result"),
)
sign_latency = Histogram(
    "streaming_sign_seconds",
    "Latency of the storage signer",
    labelnames=("signer", "result"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)
access_checks_total = Counter(
    "entitlement_access_checks_total",
    "Access resolutions by matching tier",
    labelnames=("tier",),
)
reconciliations_total = Counter(
    "entitlement_reconciliations_total",
    "Payment session reconciliations",
    labelnames=("source", "outcome"),
)
entitlements_created_total = Counter(
    "entitlement_created_total",
    "Entitlements inserted (duplicates excluded)",
)
access_tokens_minted_total = Counter(
    "entitlement_access_tokens_minted_total",
    "Access tokens minted by purchase verification",
)
access_tokens_exchanged_total = Counter(
    "entitlement_access_tokens_exchanged_total",
    "Access token exchanges for signed URLs",
    labelnames=("result",),
)
strikes_total = Counter(
    "entitlement_strikes_total",
    "Abuse reports received",
    labelnames=("event_type", "result"),
)
revocations_total = Counter(
    "entitlement_revocations_total",
    "Entitlement revocations",
    labelnames=("cause",),
)


def inc_signed_url(source: str, result: str) -> None:
    signed_urls_total.labels(source=source, result=result).inc()


def observe_sign_seconds(signer: str, result: str, seconds: float) -> None:
    sign_latency.labels(signer=signer, result=result).observe(seconds)


def inc_access_check(tier: str) -> None:
    access_checks_total.labels(tier=tier).inc()


def inc_reconciliation(source: str, outcome: str) -> None:
    reconciliations_total.labels(source=source, outcome=outcome).inc()


def inc_entitlement_created(amount: int = 1) -> None:
    entitlements_created_total.inc(amount)


def inc_token_minted() -> None:
    access_tokens_minted_total.inc()


def inc_token_exchanged(result: str) -> None:
    access_tokens_exchanged_total.labels(result=result).inc()


def inc_strike(event_type: str, result: str) -> None:
    strikes_total.labels(event_type=event_type, result=result).inc()


def inc_revocation(cause: str) -> None:
    revocations_total.labels(cause=cause).inc()


__all__ = [
    "inc_signed_url",
    "observe_sign_seconds",
    "inc_access_check",
    "inc_reconciliation",
    "inc_entitlement_created",
    "inc_token_minted",
    "inc_token_exchanged",
    "inc_strike",
    "inc_revocation",
]
