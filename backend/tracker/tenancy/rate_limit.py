"""
Rate-limit buckets layered on top of tenant resolution.

Authenticated API traffic is bucketed per tenant and user, anonymous
traffic per client IP, and WooCommerce ingestion per tenant hint and IP.
"""

from __future__ import annotations

import time
from typing import Optional

from tracker.core.config import settings
from tracker.core.metrics import record_rate_limited
from tracker.core.rate_limit import RateLimitDecision, consume, per_minute


NO_TENANT = "no-tenant"
WOO_NO_TENANT = "notenant"
NO_IP = "noip"


def api_rate_limit_key(tenant_id: Optional[str], user_id, client_ip: Optional[str]) -> str:
    identity = user_id if user_id is not None else (client_ip or NO_IP)
    return f"api:{tenant_id or NO_TENANT}:{identity}"


def unauthenticated_rate_limit_key(client_ip: Optional[str]) -> str:
    return f"api:unauthenticated:{client_ip or NO_IP}"


def normalize_tenant_hint(*candidates: Optional[str]) -> str:
    # Lower-cased and trimmed so "ACME " and "acme" share one bucket.
    for candidate in candidates:
        if candidate is None:
            continue
        value = str(candidate).strip().lower()
        if value:
            return value
    return WOO_NO_TENANT


def woocommerce_rate_limit_key(tenant_hint: str, client_ip: Optional[str]) -> str:
    return f"woo:{tenant_hint}:{client_ip or NO_IP}"


def _take(key: str, limit: int, bucket: str) -> RateLimitDecision:
    capacity, refill = per_minute(limit)
    decision = consume(key, capacity=capacity, refill_rate_per_sec=refill)
    if not decision.allowed:
        record_rate_limited(bucket)
    return decision


def check_api_rate_limit(
    *,
    tenant_id: Optional[str],
    user_id,
    client_ip: Optional[str],
) -> RateLimitDecision:
    if user_id is None:
        return _take(
            unauthenticated_rate_limit_key(client_ip),
            settings.API_UNAUTHENTICATED_RATE_LIMIT_PER_MINUTE,
            "api:unauthenticated",
        )
    return _take(
        api_rate_limit_key(tenant_id, user_id, client_ip),
        settings.API_RATE_LIMIT_PER_MINUTE,
        "api",
    )


def check_woocommerce_rate_limit(*, tenant_hint: str, client_ip: Optional[str]) -> RateLimitDecision:
    return _take(
        woocommerce_rate_limit_key(tenant_hint, client_ip),
        settings.WOOCOMMERCE_RATE_LIMIT_PER_MINUTE,
        "woocommerce",
    )


def rate_limit_headers(decision: RateLimitDecision, *, now: float | None = None) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(0, decision.remaining)),
    }
    if decision.retry_after > 0:
        current = time.time() if now is None else now
        headers["Retry-After"] = str(decision.retry_after)
        headers["X-RateLimit-Reset"] = str(int(current) + decision.retry_after)
    return headers
