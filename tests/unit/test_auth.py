"""Tests for the control API key gate and rate limiter."""

from __future__ import annotations

import pytest

from streamgrid.control_api.app.auth import (
    AuthDecision,
    AuthError,
    AuthGate,
    extract_key,
    generate_api_key,
)
from streamgrid.control_api.app.ratelimit import SlidingWindowLimiter

KEY = "a" * 64


# ── Key generation ───────────────────────────────────────────────────────

def test_generated_key_shape():
    key = generate_api_key()
    assert len(key) == 64
    assert all(c in "0123456789abcdef" for c in key)
    assert generate_api_key() != key


# ── Decision order ───────────────────────────────────────────────────────

class TestAuthenticate:

    def test_disabled_wins_over_valid_key(self):
        gate = AuthGate(api_key=KEY, enabled=False)
        assert gate.authenticate(KEY) is AuthDecision.SERVICE_DISABLED

    def test_missing(self):
        gate = AuthGate(api_key=KEY, enabled=True)
        assert gate.authenticate(None) is AuthDecision.MISSING_CREDENTIAL
        assert gate.authenticate("") is AuthDecision.MISSING_CREDENTIAL

    def test_wrong(self):
        gate = AuthGate(api_key=KEY, enabled=True)
        assert gate.authenticate("b" * 64) is AuthDecision.INVALID_CREDENTIAL

    def test_prefix_is_not_a_match(self):
        gate = AuthGate(api_key=KEY, enabled=True)
        assert gate.authenticate(KEY[:10]) is AuthDecision.INVALID_CREDENTIAL
        assert gate.authenticate(KEY + "a") is AuthDecision.INVALID_CREDENTIAL

    def test_empty_configured_key_never_matches(self):
        gate = AuthGate(api_key="", enabled=True)
        assert gate.authenticate("anything") is AuthDecision.INVALID_CREDENTIAL

    def test_correct(self):
        gate = AuthGate(api_key=KEY, enabled=True)
        assert gate.authenticate(KEY) is AuthDecision.ALLOW

    def test_regenerate_invalidates_old_key(self):
        gate = AuthGate(api_key=KEY, enabled=True)
        new = gate.regenerate()
        assert gate.authenticate(KEY) is AuthDecision.INVALID_CREDENTIAL
        assert gate.authenticate(new) is AuthDecision.ALLOW

    def test_update_is_partial(self):
        gate = AuthGate(api_key=KEY, enabled=False)
        gate.update(enabled=True)
        assert gate.config().api_key == KEY
        assert gate.config().enabled is True


@pytest.mark.parametrize("decision,status,error", [
    (AuthDecision.SERVICE_DISABLED, 503, "API is disabled"),
    (AuthDecision.MISSING_CREDENTIAL, 401, "Missing API key"),
    (AuthDecision.INVALID_CREDENTIAL, 403, "Invalid API key"),
])
def test_rejection_bodies(decision, status, error):
    exc = AuthError(decision)
    assert exc.status_code == status
    assert exc.body()["error"] == error
    assert exc.body()["message"]


# ── Header extraction ────────────────────────────────────────────────────

@pytest.mark.parametrize("headers,key", [
    ({"x-api-key": "k1"}, "k1"),
    ({"authorization": "Bearer k2"}, "k2"),
    ({"x-api-key": "k1", "authorization": "Bearer k2"}, "k1"),
    ({"authorization": "Basic abc"}, None),
    ({"authorization": "Bearer "}, None),
    ({}, None),
])
def test_extract_key(headers, key):
    assert extract_key(headers) == key


# ── Rate limiter ─────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestSlidingWindow:

    def test_limit_then_reject(self):
        limiter = SlidingWindowLimiter(limit=3, window_s=60, clock=FakeClock())
        results = [limiter.hit("ip").allowed for _ in range(4)]
        assert results == [True, True, True, False]

    def test_remaining_counts_down(self):
        limiter = SlidingWindowLimiter(limit=3, window_s=60, clock=FakeClock())
        assert [limiter.hit("ip").remaining for _ in range(4)] == [2, 1, 0, 0]

    def test_window_rolls(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(limit=2, window_s=60, clock=clock)
        limiter.hit("ip")
        clock.now += 30
        limiter.hit("ip")
        assert limiter.hit("ip").allowed is False
        clock.now += 31
        # first hit has left the window, second is still inside
        status = limiter.hit("ip")
        assert status.allowed is True
        assert limiter.hit("ip").allowed is False

    def test_keys_are_independent(self):
        limiter = SlidingWindowLimiter(limit=1, window_s=60, clock=FakeClock())
        assert limiter.hit("a").allowed
        assert limiter.hit("b").allowed
        assert not limiter.hit("a").allowed

    def test_reset_header(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(limit=1, window_s=900, clock=clock)
        limiter.hit("ip")
        clock.now += 100
        status = limiter.hit("ip")
        assert status.reset_s == 800
        assert status.headers() == {
            "RateLimit-Limit": "1",
            "RateLimit-Remaining": "0",
            "RateLimit-Reset": "800",
        }
