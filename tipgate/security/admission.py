"""Admission control for webhook endpoints: per-client rate limiting.

Buckets:
- default: every client address, keyed by IP
- trusted: addresses under a configured processor prefix get a larger limit
Health paths are never limited.

This is an availability control. Forged or duplicate payloads are rejected by
signature verification and the replay guard, never by the limiter.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from slowapi.util import get_remote_address
from starlette.requests import Request

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "default"
TRUSTED_BUCKET = "trusted"
EXEMPT_BUCKET = "exempt"


def get_client_ip(request: Request, trusted_proxies: str = "") -> str:
    """Extract client IP, respecting the trusted proxy setting."""
    if trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    bucket: str
    retry_after: int = 0
    remaining: int = 0
    # True only for the first rejection of a client within one window
    first_rejection: bool = False


class AdmissionController:
    """Moving-window limiter with a separate bucket for trusted processor ranges."""

    def __init__(
        self,
        default_limit: str = "50/minute",
        trusted_limit: str = "100/minute",
        trusted_prefixes: Iterable[str] = (),
        exempt_paths: Iterable[str] = ("/webhooks/health", "/health"),
    ) -> None:
        self._limits = {
            DEFAULT_BUCKET: parse(default_limit),
            TRUSTED_BUCKET: parse(trusted_limit),
        }
        self._trusted_prefixes = tuple(p for p in trusted_prefixes if p)
        self._exempt_paths = frozenset(exempt_paths)
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)
        # (bucket, client) -> epoch second the current rejection window ends
        self._alerted_until: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def bucket_for(self, client_ip: str) -> str:
        if any(client_ip.startswith(prefix) for prefix in self._trusted_prefixes):
            return TRUSTED_BUCKET
        return DEFAULT_BUCKET

    def admit(self, client_ip: str, path: str = "") -> AdmissionDecision:
        """Count one request from `client_ip` and decide whether it may proceed."""
        if path in self._exempt_paths:
            return AdmissionDecision(allowed=True, bucket=EXEMPT_BUCKET)

        bucket = self.bucket_for(client_ip)
        item = self._limits[bucket]
        allowed = self._limiter.hit(item, bucket, client_ip)
        reset_time, remaining = self._limiter.get_window_stats(item, bucket, client_ip)

        if allowed:
            return AdmissionDecision(allowed=True, bucket=bucket, remaining=remaining)

        now = time.time()
        retry_after = max(1, math.ceil(reset_time - now))
        key = (bucket, client_ip)
        with self._lock:
            first = self._alerted_until.get(key, 0.0) <= now
            if first:
                self._alerted_until[key] = now + retry_after

        logger.warning(
            "Rate limit exceeded: client=%s bucket=%s retry_after=%ds",
            client_ip, bucket, retry_after,
        )
        return AdmissionDecision(
            allowed=False,
            bucket=bucket,
            retry_after=retry_after,
            first_rejection=first,
        )

    def reset(self) -> None:
        """Clear all counters (tests)."""
        self._storage.reset()
        with self._lock:
            self._alerted_until.clear()
