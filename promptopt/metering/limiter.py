"""
Fixed Window Rate Limiter

Counts requests per caller key inside non-sliding time buckets aligned to
multiples of the window length. Pluggable backends:
- In-memory backend (default): per-process counters
- Redis backend (optional): INCR/EXPIRE counters shared across processes

State is advisory. Losing it (restart, Redis flush) only relaxes burst
protection for the remainder of a window; the quota ledger is the durable
backstop.
"""

import math
import time
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis

from .metrics import MetricsCollector, record_rate_limiter_unavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a rate limit check."""
    allowed: bool
    retry_after_seconds: int
    remaining: int
    window_start: int
    limit: int
    window_seconds: int


def _window_bounds(now: float, window_seconds: int) -> Tuple[int, int]:
    """Return (window_start, window_end) for a timestamp, in epoch seconds."""
    start = int(now // window_seconds) * window_seconds
    return start, start + window_seconds


def _retry_after(now: float, window_end: float) -> int:
    return max(1, math.ceil(window_end - now))


class RateLimiterBackend(ABC):
    """Abstract base class for rate limiter backends."""

    @abstractmethod
    def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        """
        Count one request against the current window for a key.

        Args:
            key: Caller identity + route class
            limit: Requests allowed per window
            window_seconds: Window length

        Returns:
            RateDecision for this request
        """
        pass

    @abstractmethod
    def reset(self, key: Optional[str] = None) -> None:
        """Drop window state for one key, or for all keys."""
        pass


class InMemoryRateLimiter(RateLimiterBackend):
    """In-memory fixed window counters (per-process)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.windows: Dict[str, Dict[str, int]] = {}
        self.lock = threading.Lock()

    def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        now = self.clock()
        window_start, window_end = _window_bounds(now, window_seconds)

        with self.lock:
            window = self.windows.get(key)
            if window is None or window["start"] != window_start:
                # Window rolled over (or first request): start a fresh count
                window = {"start": window_start, "count": 0}
                self.windows[key] = window

            if window["count"] >= limit:
                return RateDecision(
                    allowed=False,
                    retry_after_seconds=_retry_after(now, window_end),
                    remaining=0,
                    window_start=window_start,
                    limit=limit,
                    window_seconds=window_seconds,
                )

            window["count"] += 1
            remaining = limit - window["count"]

        return RateDecision(
            allowed=True,
            retry_after_seconds=0,
            remaining=remaining,
            window_start=window_start,
            limit=limit,
            window_seconds=window_seconds,
        )

    def reset(self, key: Optional[str] = None) -> None:
        with self.lock:
            if key is None:
                self.windows.clear()
            else:
                self.windows.pop(key, None)


class RedisRateLimiter(RateLimiterBackend):
    """Redis-backed fixed window counters (multi-process)."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client=None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Args:
            redis_url: Redis connection URL
            client: Pre-built redis client (takes precedence over redis_url)
            clock: Time source
            metrics: Collector for store failures (defaults to the global one)
        """
        self.clock = clock
        self.metrics = metrics
        if client is not None:
            self.redis_client = client
        else:
            self.redis_client = redis.from_url(redis_url, decode_responses=True)
            logger.info(f"Redis rate limiter initialized: {redis_url}")

    def _get_window_key(self, key: str, window_start: int) -> str:
        return f"ratelimit:window:{key}:{window_start}"

    def hit(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        now = self.clock()
        window_start, window_end = _window_bounds(now, window_seconds)
        window_key = self._get_window_key(key, window_start)

        # INCR is atomic; the expiry keeps stale windows from accumulating
        try:
            pipe = self.redis_client.pipeline()
            pipe.incr(window_key)
            pipe.expire(window_key, window_seconds + 1)
            count, _ = pipe.execute()
        except redis.RedisError as e:
            # Counters are advisory: an unreachable store relaxes burst
            # protection, the quota ledger still applies
            logger.warning(f"Rate limiter store unavailable, allowing {key}: {e}")
            record_rate_limiter_unavailable("redis", self.metrics)
            return RateDecision(
                allowed=True,
                retry_after_seconds=0,
                remaining=limit,
                window_start=window_start,
                limit=limit,
                window_seconds=window_seconds,
            )
        count = int(count)

        if count > limit:
            return RateDecision(
                allowed=False,
                retry_after_seconds=_retry_after(now, window_end),
                remaining=0,
                window_start=window_start,
                limit=limit,
                window_seconds=window_seconds,
            )

        return RateDecision(
            allowed=True,
            retry_after_seconds=0,
            remaining=limit - count,
            window_start=window_start,
            limit=limit,
            window_seconds=window_seconds,
        )

    def reset(self, key: Optional[str] = None) -> None:
        pattern = f"ratelimit:window:{key}:*" if key else "ratelimit:window:*"
        for window_key in self.redis_client.scan_iter(match=pattern):
            self.redis_client.delete(window_key)


class RateLimiter:
    """
    Main rate limiter class with pluggable backends.

    Automatically selects backend based on configuration:
    - Redis backend if redis_url is provided
    - In-memory backend otherwise
    """

    def __init__(self, config, backend: Optional[RateLimiterBackend] = None):
        """
        Initialize rate limiter with configuration.

        Args:
            config: MeteringConfig instance
            backend: Explicit backend (overrides selection from config)
        """
        self.config = config

        if backend is not None:
            self.backend = backend
        elif config.redis_url:
            logger.info("Using Redis rate limiter backend")
            self.backend = RedisRateLimiter(config.redis_url)
        else:
            logger.info("Using in-memory rate limiter backend")
            self.backend = InMemoryRateLimiter()

    def check(self, key: str, limit_per_window: int, window_seconds: int) -> RateDecision:
        """
        Count a request for a key and decide whether it is allowed.

        Args:
            key: Caller identity + route class (e.g. "quick:user:123")
            limit_per_window: Requests allowed per window
            window_seconds: Window length in seconds

        Returns:
            RateDecision; when denied, retry_after_seconds is > 0
        """
        if not self.config.rate_limit_enabled:
            return RateDecision(
                allowed=True,
                retry_after_seconds=0,
                remaining=limit_per_window,
                window_start=_window_bounds(time.time(), window_seconds)[0],
                limit=limit_per_window,
                window_seconds=window_seconds,
            )

        decision = self.backend.hit(key, limit_per_window, window_seconds)
        if not decision.allowed:
            logger.warning(
                f"Rate limit reached for {key}: {limit_per_window}/{window_seconds}s, "
                f"retry in {decision.retry_after_seconds}s"
            )
        return decision

    def check_route(self, route_class: str, identity: str) -> RateDecision:
        """Check using the configured limit for a route class."""
        return self.check(
            f"{route_class}:{identity}",
            self.config.get_route_limit(route_class),
            self.config.rate_limit_window_sec,
        )

    def reset(self, key: Optional[str] = None) -> None:
        self.backend.reset(key)
