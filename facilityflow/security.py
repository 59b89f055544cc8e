from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, Tuple

from flask import current_app, request

from facilityflow.errors import ValidationError


EXTERNAL_API_PREFIX = "/api/external/"
_LIMITED_PREFIXES = ("/api/", "/uploads/")
_MAX_TRACKED_KEYS = 10_000


@dataclass(frozen=True)
class RateBucket:
    name: str
    limit: int
    window_seconds: int


class FixedWindowLimiter:
    """Counts hits per key in fixed windows; process-local."""

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, bucket: RateBucket) -> Tuple[bool, int]:
        now = self._clock()
        with self._lock:
            started, hits = self._windows.get(key, (now, 0))
            if now - started >= bucket.window_seconds:
                started, hits = now, 0
            hits += 1
            self._windows[key] = (started, hits)
            if len(self._windows) > _MAX_TRACKED_KEYS:
                self._evict(now - bucket.window_seconds * 2)
        return hits <= bucket.limit, max(0, int(bucket.window_seconds - (now - started)))

    def _evict(self, cutoff: float) -> None:
        self._windows = {key: entry for key, entry in self._windows.items() if entry[0] >= cutoff}

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


_LIMITER = FixedWindowLimiter()


def _bucket_for_request() -> RateBucket:
    config = current_app.config
    window = max(1, int(config.get("RATE_LIMIT_WINDOW_SECONDS", 60) or 60))
    if request.path.startswith(EXTERNAL_API_PREFIX):
        return RateBucket("external", max(1, int(config.get("EXTERNAL_RATE_LIMIT_MAX_REQUESTS", 30) or 30)), window)
    return RateBucket("portal", max(1, int(config.get("RATE_LIMIT_MAX_REQUESTS", 300) or 300)), window)


def _client_key(bucket: RateBucket) -> str:
    ip = str(request.remote_addr or "").strip() or "unknown"
    if bucket.name == "external":
        # Key by client only; the token is part of the path.
        return f"external|{ip}"
    credential = str(request.headers.get("Authorization") or "")[-16:] or "anon"
    route = request.url_rule.rule if request.url_rule else request.path
    return f"portal|{ip}|{credential}|{request.method}|{route}"


def enforce_rate_limit():
    if not bool(current_app.config.get("RATE_LIMIT_ENABLED", True)):
        return None
    if request.method == "OPTIONS" or not request.path.startswith(_LIMITED_PREFIXES):
        return None

    bucket = _bucket_for_request()
    allowed, retry_after = _LIMITER.hit(_client_key(bucket), bucket)
    if allowed:
        return None
    raise ValidationError(
        code="rate_limit_exceeded",
        message_key="rate_limit_exceeded",
        http_status=429,
        critical=False,
        details=f"bucket {bucket.name}",
        payload={"retry_after": retry_after},
    )


def apply_security_headers(response):
    if not bool(current_app.config.get("SECURITY_HEADERS_ENABLED", True)):
        return response
    headers = response.headers
    headers.setdefault("X-Content-Type-Options", "nosniff")
    headers.setdefault("X-Frame-Options", "DENY")
    headers.setdefault("Referrer-Policy", "no-referrer")
    headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    if request.path.startswith(EXTERNAL_API_PREFIX):
        headers.setdefault("Cache-Control", "no-store")
    if request.is_secure:
        headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


def reset_rate_limiter_for_tests() -> None:
    _LIMITER.reset()
