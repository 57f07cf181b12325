"""
Rate Limiting Tests
===================

Policies, counter stores, and the middleware in front of a tiny app.
"""

import json
from unittest.mock import MagicMock

import pytest
import redis
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from contract_analysis.errors import AdmissionRejected, AdmissionUnavailable
from contract_analysis.middleware.rate_limit import (
    DEFAULT_POLICIES,
    CounterStoreUnavailable,
    MemoryCounterStore,
    RateLimiter,
    RateLimitMiddleware,
    RateLimitPolicy,
    RedisCounterStore,
    load_policies,
    policy_name_for,
    rejection_response,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class BrokenStore(MemoryCounterStore):
    def increment(self, key, window_seconds):
        raise CounterStoreUnavailable("connection refused")


def _app(limiter: RateLimiter, route_policies=(("POST", "/api/v1/contracts/upload", "upload"),)):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limiter=limiter, route_policies=route_policies)
    calls = {"count": 0}

    @app.post("/api/v1/contracts/upload")
    async def upload():
        calls["count"] += 1
        return {"ok": True}

    @app.get("/api/v1/contracts")
    async def contracts():
        calls["count"] += 1
        return []

    @app.post("/api/v1/login")
    async def login(ok: bool = False):
        calls["count"] += 1
        if not ok:
            raise HTTPException(status_code=401, detail="bad credentials")
        return {"ok": True}

    app.state.calls = calls
    return app


def _small_policies(**overrides):
    policies = dict(DEFAULT_POLICIES)
    policies.update(overrides)
    return policies


class TestPolicies:

    def test_default_table(self):
        assert DEFAULT_POLICIES["upload"].max_requests == 10
        assert DEFAULT_POLICIES["upload"].window_seconds == 3600
        assert DEFAULT_POLICIES["api"].max_requests == 100
        assert DEFAULT_POLICIES["auth"].count_only_failures is True
        assert DEFAULT_POLICIES["ai"].window_seconds == 900

    def test_environment_overrides(self):
        policies = load_policies({"RATE_LIMIT_UPLOAD_MAX": "3", "RATE_LIMIT_API_WINDOW": "60"})
        assert policies["upload"].max_requests == 3
        assert policies["api"].window_seconds == 60
        assert policies["strict"] == DEFAULT_POLICIES["strict"]

    def test_route_matching(self):
        assert policy_name_for("POST", "/api/v1/contracts/upload") == "upload"
        assert policy_name_for("GET", "/api/v1/contracts/upload") == "api"
        assert policy_name_for("GET", "/api/v1/contracts") == "api"


class TestMemoryStore:

    def test_window_counts_and_resets(self):
        clock = FakeClock()
        store = MemoryCounterStore(clock=clock)

        assert store.increment("k", 60)[0] == 1
        assert store.increment("k", 60)[0] == 2

        clock.now += 61
        count, reset_at = store.increment("k", 60)
        assert count == 1
        assert reset_at == clock.now + 60

    def test_decrement(self):
        store = MemoryCounterStore()
        store.increment("k", 60)
        store.increment("k", 60)
        store.decrement("k")
        assert store.increment("k", 60)[0] == 2


class TestLimiter:

    def test_n_plus_one_rejected(self):
        limiter = RateLimiter(MemoryCounterStore())
        policy = RateLimitPolicy("upload", 3600, 10, "Upload limit exceeded.")

        decisions = [limiter.hit(policy, "1.2.3.4:user-a") for _ in range(11)]

        assert all(d.allowed for d in decisions[:10])
        assert not decisions[10].allowed
        assert decisions[9].remaining == 0

    def test_other_caller_unaffected(self):
        limiter = RateLimiter(MemoryCounterStore())
        policy = RateLimitPolicy("upload", 3600, 2, "Upload limit exceeded.")

        for _ in range(3):
            limiter.hit(policy, "1.2.3.4:user-a")

        assert limiter.hit(policy, "1.2.3.4:user-b").allowed
        assert limiter.hit(policy, "5.6.7.8:user-a").allowed

    def test_policies_count_separately(self):
        limiter = RateLimiter(MemoryCounterStore())
        upload = RateLimitPolicy("upload", 3600, 1, "x")
        api = RateLimitPolicy("api", 900, 1, "y")

        assert limiter.hit(upload, "k").allowed
        assert limiter.hit(api, "k").allowed


class TestRedisStore:

    def test_increment_uses_one_transaction(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [3, True, 59_000]
        store = RedisCounterStore(client=client)

        count, _ = store.increment("upload:1.2.3.4:u", 60)

        assert count == 3
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incr.assert_called_once_with("rl:upload:1.2.3.4:u")
        pipe.pexpire.assert_called_once_with("rl:upload:1.2.3.4:u", 60_000, nx=True)

    def test_connection_error_is_unavailable(self):
        client = MagicMock()
        client.pipeline.return_value.execute.side_effect = redis.ConnectionError("refused")
        store = RedisCounterStore(client=client)

        with pytest.raises(CounterStoreUnavailable):
            store.increment("k", 60)

    @pytest.mark.parametrize("version, supported", [
        ("7.2.4", True),
        ("7.0.0", True),
        ("6.2.14", False),
        ("", False),
    ])
    def test_server_version_check(self, version, supported, caplog):
        client = MagicMock()
        client.info.return_value = {"redis_version": version}

        assert RedisCounterStore(client=client).check_server_version() is supported
        client.info.assert_called_once_with("server")
        assert ("older than 7.0" in caplog.text) is not supported

    def test_server_version_unreadable(self):
        client = MagicMock()
        client.info.side_effect = redis.ConnectionError("refused")
        assert RedisCounterStore(client=client).check_server_version() is False


class TestRejectionResponse:

    def test_rate_limited(self):
        response = rejection_response(
            AdmissionRejected("Upload limit exceeded."), {"Retry-After": "30"}
        )
        assert response.status_code == 429
        assert json.loads(response.body) == {"message": "Upload limit exceeded."}
        assert response.headers["Retry-After"] == "30"

    def test_limiter_unavailable(self):
        response = rejection_response(AdmissionUnavailable())
        assert response.status_code == 503
        assert json.loads(response.body) == {"message": "Rate limiting unavailable"}


class TestMiddleware:

    def test_upload_limit_returns_429_without_running_route(self):
        policies = _small_policies(upload=RateLimitPolicy("upload", 3600, 2, "Upload limit exceeded."))
        app = _app(RateLimiter(MemoryCounterStore(), policies))
        client = TestClient(app)
        headers = {"X-User-Id": "user-a"}

        assert client.post("/api/v1/contracts/upload", headers=headers).status_code == 200
        assert client.post("/api/v1/contracts/upload", headers=headers).status_code == 200

        response = client.post("/api/v1/contracts/upload", headers=headers)
        assert response.status_code == 429
        assert response.json() == {"message": "Upload limit exceeded."}
        assert response.headers["RateLimit-Limit"] == "2"
        assert response.headers["RateLimit-Remaining"] == "0"
        assert "Retry-After" in response.headers
        assert app.state.calls["count"] == 2

    def test_different_user_same_ip_unaffected(self):
        policies = _small_policies(upload=RateLimitPolicy("upload", 3600, 1, "Upload limit exceeded."))
        client = TestClient(_app(RateLimiter(MemoryCounterStore(), policies)))

        client.post("/api/v1/contracts/upload", headers={"X-User-Id": "user-a"})
        assert client.post("/api/v1/contracts/upload", headers={"X-User-Id": "user-a"}).status_code == 429
        assert client.post("/api/v1/contracts/upload", headers={"X-User-Id": "user-b"}).status_code == 200

    def test_success_headers_present(self):
        client = TestClient(_app(RateLimiter(MemoryCounterStore())))
        response = client.get("/api/v1/contracts")
        assert response.headers["RateLimit-Limit"] == "100"
        assert response.headers["RateLimit-Remaining"] == "99"

    def test_docs_exempt(self):
        policies = _small_policies(api=RateLimitPolicy("api", 900, 1, "Too many requests."))
        client = TestClient(_app(RateLimiter(MemoryCounterStore(), policies)))

        for _ in range(3):
            assert client.get("/openapi.json").status_code == 200

    def test_count_only_failures_refunds_successes(self):
        policies = _small_policies(auth=RateLimitPolicy("auth", 900, 2, "Too many attempts.", True))
        app = _app(
            RateLimiter(MemoryCounterStore(), policies),
            route_policies=(("POST", "/api/v1/login", "auth"),),
        )
        client = TestClient(app)

        for _ in range(5):
            assert client.post("/api/v1/login?ok=true").status_code == 200

        assert client.post("/api/v1/login").status_code == 401
        assert client.post("/api/v1/login").status_code == 401
        assert client.post("/api/v1/login").status_code == 429

    def test_store_down_fail_open_admits(self):
        app = _app(RateLimiter(BrokenStore(), failure_mode="open"))
        response = TestClient(app).get("/api/v1/contracts")
        assert response.status_code == 200
        assert app.state.calls["count"] == 1

    def test_store_down_fail_closed_rejects(self):
        app = _app(RateLimiter(BrokenStore(), failure_mode="closed"))
        response = TestClient(app).get("/api/v1/contracts")
        assert response.status_code == 503
        assert response.json() == {"message": "Rate limiting unavailable"}
        assert app.state.calls["count"] == 0
