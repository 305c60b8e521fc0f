"""
Tests for rate_limiting.py
"""

from unittest.mock import patch

from flask import Flask, jsonify

from rate_limiting import RateLimiter, rate_limit


class TestRateLimiter:
    """Sliding window behaviour"""

    def test_allows_until_limit(self):
        limiter = RateLimiter(requests_per_minute=2)

        allowed_1, info_1 = limiter.check_rate_limit("1.2.3.4")
        allowed_2, info_2 = limiter.check_rate_limit("1.2.3.4")
        allowed_3, info_3 = limiter.check_rate_limit("1.2.3.4")

        assert allowed_1 and allowed_2
        assert info_1["remaining"] == 1
        assert info_2["remaining"] == 0
        assert not allowed_3
        assert info_3["error"] == "Rate limit exceeded"
        assert info_3["retry_after"] >= 1

    def test_clients_are_independent(self):
        limiter = RateLimiter(requests_per_minute=1)
        assert limiter.check_rate_limit("a")[0]
        assert limiter.check_rate_limit("b")[0]
        assert not limiter.check_rate_limit("a")[0]

    def test_window_slides(self):
        limiter = RateLimiter(requests_per_minute=1)
        with patch("rate_limiting.time.time", return_value=1000.0):
            assert limiter.check_rate_limit("a")[0]
            assert not limiter.check_rate_limit("a")[0]
        with patch("rate_limiting.time.time", return_value=1060.5):
            assert limiter.check_rate_limit("a")[0]

    def test_reset_client(self):
        limiter = RateLimiter(requests_per_minute=1)
        limiter.check_rate_limit("a")
        limiter.reset_client("a")
        assert limiter.check_rate_limit("a")[0]

    def test_stats(self):
        limiter = RateLimiter(requests_per_minute=1)
        limiter.check_rate_limit("a")
        limiter.check_rate_limit("a")

        stats = limiter.get_stats()
        assert stats["total_requests"] == 2
        assert stats["blocked_requests"] == 1
        assert stats["block_rate"] == 50


class TestDecorator:
    """Flask integration"""

    def _app(self, limiter):
        app = Flask(__name__)

        @app.route("/ping")
        @rate_limit(limiter)
        def ping():
            return jsonify({"pong": True})

        return app

    def test_headers_and_429(self):
        limiter = RateLimiter(requests_per_minute=1)
        client = self._app(limiter).test_client()

        first = client.get("/ping")
        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "1"
        assert first.headers["X-RateLimit-Remaining"] == "0"

        second = client.get("/ping")
        assert second.status_code == 429
        assert "Retry-After" in second.headers

    def test_disabled_limiter_passes_through(self):
        limiter = RateLimiter(requests_per_minute=1, enabled=False)
        client = self._app(limiter).test_client()

        assert [client.get("/ping").status_code for _ in range(3)] == [200, 200, 200]
        assert "X-RateLimit-Limit" not in client.get("/ping").headers
