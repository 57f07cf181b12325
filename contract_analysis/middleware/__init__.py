"""
Middleware Package
==================

FastAPI middleware for admission control.
"""

from .rate_limit import (
    RateLimitMiddleware,
    RateLimiter,
    RateLimitPolicy,
    RateLimitDecision,
    CounterStore,
    CounterStoreUnavailable,
    MemoryCounterStore,
    RedisCounterStore,
    DEFAULT_POLICIES,
    ROUTE_POLICIES,
    build_rate_limiter,
    load_policies,
)

__all__ = [
    "RateLimitMiddleware",
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitDecision",
    "CounterStore",
    "CounterStoreUnavailable",
    "MemoryCounterStore",
    "RedisCounterStore",
    "DEFAULT_POLICIES",
    "ROUTE_POLICIES",
    "build_rate_limiter",
    "load_policies",
]
