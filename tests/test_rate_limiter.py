"""Token-bucket throttling per caller and endpoint."""

from types import SimpleNamespace

import pytest

from prep.api_exceptions import RateLimitError
from prep.rate_limiter import DEFAULT_LIMITS, RateLimiter


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def limiter(clock):
    limiter = RateLimiter(clock=clock)
    limiter.set_limit("/api/login", 2, 60)
    return limiter


def _request(ip="10.0.0.1"):
    return SimpleNamespace(client=SimpleNamespace(host=ip))


# ============================================================================
# BUCKETS
# ============================================================================

def test_bucket_empties_then_reports_retry_after(limiter):
    assert limiter.consume("ip:a", "/api/login") == 0
    assert limiter.consume("ip:a", "/api/login") == 0
    assert limiter.consume("ip:a", "/api/login") == 30


def test_bucket_refills_with_time(limiter, clock):
    limiter.consume("ip:a", "/api/login")
    limiter.consume("ip:a", "/api/login")
    clock.now += 30
    assert limiter.consume("ip:a", "/api/login") == 0
    assert limiter.consume("ip:a", "/api/login") > 0


def test_callers_and_endpoints_have_separate_buckets(limiter):
    limiter.consume("ip:a", "/api/login")
    limiter.consume("ip:a", "/api/login")
    assert limiter.consume("ip:b", "/api/login") == 0
    assert limiter.consume("ip:a", "/api/sync") == 0


def test_unknown_endpoint_uses_default_limit(limiter):
    for _ in range(DEFAULT_LIMITS["default"].requests):
        assert limiter.consume("ip:a", "/api/sleep") == 0
    assert limiter.consume("ip:a", "/api/sleep") > 0


def test_reset_restores_default_limits(limiter):
    limiter.consume("ip:a", "/api/login")
    limiter.reset()
    assert limiter.limits["/api/login"] == DEFAULT_LIMITS["/api/login"]
    assert limiter.consume("ip:a", "/api/login") == 0


# ============================================================================
# CALLERS
# ============================================================================

def test_caller_prefers_username():
    assert RateLimiter.caller(_request(), "maya") == "user:maya"
    assert RateLimiter.caller(_request("10.0.0.9")) == "ip:10.0.0.9"
    assert RateLimiter.caller(SimpleNamespace(client=None)) == "ip:unknown"


def test_check_rate_limit_raises_with_retry_after(limiter):
    limiter.check_rate_limit(_request(), "/api/login")
    limiter.check_rate_limit(_request(), "/api/login")
    with pytest.raises(RateLimitError) as exc:
        limiter.check_rate_limit(_request(), "/api/login")
    assert exc.value.status_code == 429
    assert exc.value.details == {"retry_after": 30}
