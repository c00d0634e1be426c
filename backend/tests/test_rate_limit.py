from saaslens.services.rate_limit import (
    InMemoryRateLimiter,
    RateLimit,
    RateLimitResult,
    rate_limit_headers,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryRateLimiter:
    def _limiter(self):
        clock = FakeClock()
        limits = {"standard": RateLimit(3, 60), "upload": RateLimit(2, 60)}
        return InMemoryRateLimiter(limits, clock=clock), clock

    def test_allows_up_to_limit(self):
        limiter, _ = self._limiter()
        results = [limiter.check("u1", "upload") for _ in range(3)]
        assert [r.allowed for r in results] == [True, True, False]
        assert [r.remaining for r in results] == [1, 0, 0]

    def test_window_resets(self):
        limiter, clock = self._limiter()
        limiter.check("u1", "upload")
        limiter.check("u1", "upload")
        clock.now += 59
        assert limiter.check("u1", "upload").allowed is False
        clock.now += 1
        assert limiter.check("u1", "upload").allowed is True

    def test_reset_in_counts_down(self):
        limiter, clock = self._limiter()
        limiter.check("u1", "upload")
        clock.now += 20
        assert limiter.check("u1", "upload").reset_in == 40

    def test_identifiers_and_types_are_independent(self):
        limiter, _ = self._limiter()
        limiter.check("u1", "upload")
        limiter.check("u1", "upload")
        assert limiter.check("u2", "upload").allowed is True
        assert limiter.check("u1", "standard").allowed is True

    def test_unknown_type_uses_standard(self):
        limiter, _ = self._limiter()
        assert limiter.check("u1", "mystery").limit == 3

    def test_expired_windows_are_evicted(self):
        limiter, clock = self._limiter()
        for i in range(1000):
            limiter.check(f"caller-{i}", "upload")
        clock.now += 30
        limiter.check("live", "upload")
        assert len(limiter._windows) == 1001

        clock.now += 31
        limiter.check("late", "standard")
        assert set(limiter._windows) == {("upload", "live"), ("standard", "late")}

    def test_eviction_keeps_counts_of_open_windows(self):
        limiter, clock = self._limiter()
        clock.now += 10
        limiter.check("u1", "upload")
        limiter.check("u1", "upload")
        clock.now += 55
        # a sweep runs here, but u1's window is still open
        assert limiter.check("u1", "upload").allowed is False

    def test_reset(self):
        limiter, _ = self._limiter()
        limiter.check("u1", "upload")
        limiter.check("u1", "upload")
        limiter.reset()
        assert limiter.check("u1", "upload").allowed is True


class TestHeaders:
    def test_allowed(self):
        headers = rate_limit_headers(RateLimitResult(True, 4, 12.3, 5))
        assert headers == {"X-RateLimit-Limit": "5", "X-RateLimit-Remaining": "4", "X-RateLimit-Reset": "13"}

    def test_denied_has_retry_after(self):
        headers = rate_limit_headers(RateLimitResult(False, 0, 0.0, 5))
        assert headers["Retry-After"] == "1"
