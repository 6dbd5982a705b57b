"""
Rate limiter — in-memory sliding window.

Limits:
  - Per IP on /api/checkout: configurable (default 30/min)
"""

import time

from fastapi import Depends, HTTPException, Request

from paylink.config import Settings, get_settings

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}

_PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.",
    "172.20.", "172.21.", "172.22.", "172.23.", "172.24.",
    "172.25.", "172.26.", "172.27.", "172.28.", "172.29.",
    "172.30.", "172.31.", "192.168.", "127.", "::1",
)


def _drop_expired_keys(cutoff: float) -> None:
    for key in [k for k, stamps in _memory_store.items() if not stamps or stamps[-1] <= cutoff]:
        del _memory_store[key]


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    now = time.time()
    cutoff = now - window_seconds

    _drop_expired_keys(cutoff)

    recent = [t for t in _memory_store.get(key, []) if t > cutoff]
    current_count = len(recent)

    if current_count >= limit:
        if recent:
            _memory_store[key] = recent
        return False, 0

    recent.append(now)
    _memory_store[key] = recent
    return True, limit - current_count - 1


def check_rate_limit(key: str, limit: int, window: int = 60):
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.warning("rate_limited", key=key, limit=limit)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def get_real_ip(request: Request) -> str:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ips = [ip.strip() for ip in forwarded.split(",")]
        for ip in ips:
            if not ip.startswith(_PRIVATE_PREFIXES):
                return ip
        return ips[0]
    return request.client.host if request.client else "unknown"


def rate_limit_checkout(request: Request, settings: Settings = Depends(get_settings)):
    """FastAPI dependency for the checkout endpoint."""
    return check_rate_limit(
        f"checkout:ip:{get_real_ip(request)}",
        settings.rate_limit_checkout_per_minute,
    )


def reset_rate_limits():
    _memory_store.clear()
