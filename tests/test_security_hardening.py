import unittest

from facilityflow import create_app
from facilityflow.config import Config
from facilityflow.db import close_db
from facilityflow.security import FixedWindowLimiter, RateBucket, reset_rate_limiter_for_tests
from facilityflow.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_config(temp_db: TempDbSandbox, **overrides):
    attrs = {
        "TESTING": False,
        "RATE_LIMIT_ENABLED": True,
        "RATE_LIMIT_WINDOW_SECONDS": 60,
        "RATE_LIMIT_MAX_REQUESTS": 300,
    }
    attrs.update(overrides)
    return temp_db.make_config(Config, **attrs)


class SecurityHardeningTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="security_hardening")
        self.app = create_app(_build_temp_config(self._temp_db))
        self.client = self.app.test_client()
        reset_rate_limiter_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_rate_limiter_for_tests()

    def test_rate_limit_blocks_excessive_api_calls(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 2

        first = self.client.get("/api/unknown")
        second = self.client.get("/api/unknown")
        third = self.client.get("/api/unknown")

        self.assertEqual(first.status_code, 404)
        self.assertEqual(second.status_code, 404)
        self.assertEqual(third.status_code, 429)
        payload = third.get_json() or {}
        self.assertEqual(payload.get("error"), "rate_limit_exceeded")
        self.assertEqual(payload.get("message"), error_message("rate_limit_exceeded"))
        self.assertGreaterEqual(int(payload.get("retry_after") or 0), 0)

    def test_health_is_not_rate_limited(self) -> None:
        self.app.config["RATE_LIMIT_MAX_REQUESTS"] = 1
        statuses = {self.client.get("/health").status_code for _ in range(3)}
        self.assertEqual(statuses, {200})

    def test_security_headers_present(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("X-Content-Type-Options"), "nosniff")
        self.assertEqual(response.headers.get("X-Frame-Options"), "DENY")
        self.assertEqual(response.headers.get("Referrer-Policy"), "no-referrer")
        self.assertTrue((response.headers.get("Content-Security-Policy") or "").strip())
        self.assertTrue((response.headers.get("X-Request-Id") or "").strip())
        self.assertNotIn("Strict-Transport-Security", response.headers)

    def test_headers_can_be_disabled(self) -> None:
        self.app.config["SECURITY_HEADERS_ENABLED"] = False
        response = self.client.get("/health")
        self.assertNotIn("X-Frame-Options", response.headers)
        self.assertTrue((response.headers.get("X-Request-Id") or "").strip())


class FixedWindowLimiterTest(unittest.TestCase):
    def test_window_resets_after_expiry(self) -> None:
        ticks = [0.0]
        limiter = FixedWindowLimiter(clock=lambda: ticks[0])
        bucket = RateBucket("portal", limit=2, window_seconds=10)

        self.assertEqual([limiter.hit("k", bucket)[0] for _ in range(3)], [True, True, False])
        ticks[0] = 4.0
        self.assertEqual(limiter.hit("k", bucket), (False, 6))
        self.assertTrue(limiter.hit("other", bucket)[0])

        ticks[0] = 10.0
        self.assertEqual(limiter.hit("k", bucket), (True, 10))


if __name__ == "__main__":
    unittest.main()
