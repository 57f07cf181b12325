"""
Rate Limiting Middleware
========================

Fixed-window rate limiting per caller and per route category.

Counters live in a CounterStore:
- memory: per process (development, single instance)
- redis: shared across instances (INCR + PEXPIRE NX in one MULTI; Redis >= 7.0)

Caller key is "<client-ip>:<user-id|anonymous>", so an anonymous flood from
one address cannot exhaust another user's allowance.

When the counter store is unreachable, RATE_LIMIT_FAILURE_MODE decides:
- open (default): admit and log a warning
- closed: reject with 503
"""

import os
import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import redis
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth import user_id_from_headers
from ..config import Settings, get_settings
from ..errors import AdmissionRejected, AdmissionUnavailable, PipelineError

logger = logging.getLogger(__name__)


# =============================================================================
# POLICIES
# =============================================================================

@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: int
    max_requests: int
    message: str
    # Successful (< 400) responses are refunded
    count_only_failures: bool = False


DEFAULT_POLICIES: Dict[str, RateLimitPolicy] = {
    "auth": RateLimitPolicy(
        "auth", 15 * 60, 5,
        "Too many authentication attempts. Please try again later.",
        count_only_failures=True,
    ),
    "upload": RateLimitPolicy("upload", 60 * 60, 10, "Upload limit exceeded. Please try again later."),
    "ai": RateLimitPolicy("ai", 15 * 60, 30, "AI request limit exceeded. Please slow down."),
    "strict": RateLimitPolicy("strict", 60 * 60, 5, "Operation limit exceeded. Please try again later."),
    "api": RateLimitPolicy("api", 15 * 60, 100, "Too many requests. Please try again later."),
    "csrf": RateLimitPolicy("csrf", 15 * 60, 20, "Too many token requests."),
}

DEFAULT_POLICY = "api"

# (method or "*", path prefix, policy name); first match wins, else DEFAULT_POLICY
ROUTE_POLICIES: Sequence[Tuple[str, str, str]] = (
    ("POST", "/api/v1/contracts/upload", "upload"),
)

EXEMPT_PATHS = ("/docs", "/openapi.json", "/redoc")


def load_policies(environ: Mapping[str, str] = os.environ) -> Dict[str, RateLimitPolicy]:
    """DEFAULT_POLICIES with RATE_LIMIT_<NAME>_MAX / _WINDOW overrides applied"""
    policies = {}
    for name, policy in DEFAULT_POLICIES.items():
        prefix = f"RATE_LIMIT_{name.upper()}"
        max_requests = environ.get(f"{prefix}_MAX")
        window = environ.get(f"{prefix}_WINDOW")
        if max_requests:
            policy = replace(policy, max_requests=int(max_requests))
        if window:
            policy = replace(policy, window_seconds=int(window))
        policies[name] = policy
    return policies


def policy_name_for(
    method: str,
    path: str,
    route_policies: Iterable[Tuple[str, str, str]] = ROUTE_POLICIES,
) -> str:
    for rule_method, prefix, name in route_policies:
        if rule_method in ("*", method) and path.startswith(prefix):
            return name
    return DEFAULT_POLICY


# =============================================================================
# COUNTER STORES
# =============================================================================

class CounterStoreUnavailable(Exception):
    """Raised when the counter backend cannot be reached."""


class CounterStore(ABC):

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> Tuple[int, float]:
        """
        Atomically count one hit.

        Returns:
            (count in the current window, epoch seconds when it resets)
        """
        pass

    @abstractmethod
    def decrement(self, key: str) -> None:
        pass


class MemoryCounterStore(CounterStore):
    """In-process fixed windows"""

    MAX_KEYS = 10_000

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, float]] = {}

    def increment(self, key: str, window_seconds: int) -> Tuple[int, float]:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if reset_at <= now:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            if len(self._windows) > self.MAX_KEYS:
                self._prune(now)
            return count, reset_at

    def decrement(self, key: str) -> None:
        with self._lock:
            entry = self._windows.get(key)
            if entry and entry[0] > 0:
                self._windows[key] = (entry[0] - 1, entry[1])

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if reset_at <= now]
        for k in expired:
            del self._windows[k]


class RedisCounterStore(CounterStore):
    """
    Shared counters in Redis, keys prefixed with `rl:`.

    Requires Redis >= 7.0 (PEXPIRE NX). On an older server every hit raises
    CounterStoreUnavailable and RATE_LIMIT_FAILURE_MODE applies to all
    requests; `check_server_version` reports this at startup.
    """

    MIN_SERVER_VERSION = (7, 0)

    def __init__(self, client=None, redis_url: Optional[str] = None, prefix: str = "rl:"):
        self.client = client or redis.from_url(
            redis_url or get_settings().redis_url,
            socket_timeout=1,
            socket_connect_timeout=1,
        )
        self.prefix = prefix

    def check_server_version(self) -> bool:
        """Log an error and return False when the server cannot run PEXPIRE NX."""
        try:
            version = str(self.client.info("server").get("redis_version", ""))
        except redis.RedisError as e:
            logger.warning(f"Could not read Redis server version for rate limiting: {e}")
            return False

        parts = tuple(int(p) for p in version.split(".")[:2] if p.isdigit())
        if len(parts) == 2 and parts >= self.MIN_SERVER_VERSION:
            return True
        logger.error(
            f"Redis {version or '(unknown)'} is older than 7.0; rate limit counters will fail "
            f"and RATE_LIMIT_FAILURE_MODE applies to every request"
        )
        return False

    def increment(self, key: str, window_seconds: int) -> Tuple[int, float]:
        full_key = f"{self.prefix}{key}"
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(full_key)
            pipe.pexpire(full_key, window_seconds * 1000, nx=True)
            pipe.pttl(full_key)
            count, _, ttl_ms = pipe.execute()
        except redis.RedisError as e:
            raise CounterStoreUnavailable(str(e)) from e

        ttl = ttl_ms / 1000.0 if ttl_ms and ttl_ms > 0 else float(window_seconds)
        return int(count), time.time() + ttl

    def decrement(self, key: str) -> None:
        try:
            self.client.decr(f"{self.prefix}{key}")
        except redis.RedisError as e:
            raise CounterStoreUnavailable(str(e)) from e


# =============================================================================
# LIMITER
# =============================================================================

@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def headers(self) -> Dict[str, str]:
        reset_in = max(0, int(round(self.reset_at - time.time())))
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(reset_in),
        }
        if not self.allowed:
            headers["Retry-After"] = str(reset_in)
        return headers


class RateLimiter:
    """Applies policies to caller keys over a CounterStore"""

    def __init__(
        self,
        store: CounterStore,
        policies: Optional[Dict[str, RateLimitPolicy]] = None,
        failure_mode: str = "open",
    ):
        self.store = store
        self.policies = policies or dict(DEFAULT_POLICIES)
        self.failure_mode = failure_mode if failure_mode in ("open", "closed") else "open"

    def policy(self, name: str) -> RateLimitPolicy:
        return self.policies.get(name) or self.policies[DEFAULT_POLICY]

    @staticmethod
    def _counter_key(policy: RateLimitPolicy, caller_key: str) -> str:
        return f"{policy.name}:{caller_key}"

    def hit(self, policy: RateLimitPolicy, caller_key: str) -> RateLimitDecision:
        """
        Count a request and decide.

        Raises:
            CounterStoreUnavailable: If the store cannot be reached
        """
        count, reset_at = self.store.increment(
            self._counter_key(policy, caller_key), policy.window_seconds
        )
        return RateLimitDecision(
            allowed=count <= policy.max_requests,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_at=reset_at,
        )

    def refund(self, policy: RateLimitPolicy, caller_key: str) -> None:
        """Undo one hit (count_only_failures policies after a success)"""
        self.store.decrement(self._counter_key(policy, caller_key))


def build_rate_limiter(settings: Optional[Settings] = None) -> RateLimiter:
    """Limiter for the configured RATE_LIMIT_STORE"""
    settings = settings or get_settings()
    if settings.rate_limit_store == "redis":
        store: CounterStore = RedisCounterStore(redis_url=settings.redis_url)
        store.check_server_version()
    else:
        store = MemoryCounterStore()
    logger.info(
        f"Rate limiting: {type(store).__name__}, failure mode {settings.rate_limit_failure_mode}"
    )
    return RateLimiter(
        store=store,
        policies=load_policies(),
        failure_mode=settings.rate_limit_failure_mode,
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================

def client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    if trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def caller_key(request: Request, trust_proxy_headers: bool = False) -> str:
    user_id = user_id_from_headers(
        request.headers.get("Authorization"), request.headers.get("X-User-Id")
    )
    return f"{client_ip(request, trust_proxy_headers)}:{user_id or 'anonymous'}"


def rejection_response(
    exc: PipelineError, headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    # Runs outside the app's exception handlers, so the envelope is built here.
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message},
        headers=headers,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting.

    A rejected request never reaches the route.
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        route_policies: Sequence[Tuple[str, str, str]] = ROUTE_POLICIES,
        exempt_paths: Sequence[str] = EXEMPT_PATHS,
        trust_proxy_headers: bool = False,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.route_policies = route_policies
        self.exempt_paths = tuple(exempt_paths)
        self.trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path.startswith(self.exempt_paths) or request.method == "OPTIONS":
            return await call_next(request)

        policy = self.limiter.policy(policy_name_for(request.method, path, self.route_policies))
        key = caller_key(request, self.trust_proxy_headers)

        try:
            decision = self.limiter.hit(policy, key)
        except CounterStoreUnavailable as e:
            if self.limiter.failure_mode == "closed":
                logger.error(f"Rate limit store unavailable, rejecting request: {e}")
                return rejection_response(AdmissionUnavailable())
            logger.warning(f"Rate limit store unavailable, admitting request: {e}")
            return await call_next(request)

        if not decision.allowed:
            logger.info(f"Rate limit '{policy.name}' exceeded for {key}")
            return rejection_response(AdmissionRejected(policy.message), decision.headers())

        response = await call_next(request)

        if policy.count_only_failures and response.status_code < 400:
            try:
                self.limiter.refund(policy, key)
            except CounterStoreUnavailable as e:
                logger.warning(f"Rate limit refund failed: {e}")

        for name, value in decision.headers().items():
            response.headers[name] = value
        return response
