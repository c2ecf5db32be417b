"""
Metering Configuration Module

Explicit configuration struct for rate limiting, quota enforcement and
dispatch policy. Built from application settings and passed into each
component instead of being read from process-wide state.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TIERS = ("free", "pro", "enterprise")


@dataclass(frozen=True)
class TierLimits:
    """Daily ceilings for a subscription tier."""
    quick_daily_max: int
    deep_daily_max: int
    token_daily_max: int
    api_calls_daily_max: int


DEFAULT_TIER_LIMITS: Dict[str, TierLimits] = {
    "free": TierLimits(10, 3, 200000, 100),
    "pro": TierLimits(100, 20, 2000000, 1000),
    "enterprise": TierLimits(999999, 999999, 100000000, 999999),
}


@dataclass
class MeteringConfig:
    """Configuration for rate limiting, quotas and dispatch."""

    # Rate limiting (fixed window)
    rate_limit_enabled: bool = True
    redis_url: Optional[str] = None
    rate_limit_window_sec: int = 60
    route_limits: Dict[str, int] = field(default_factory=lambda: {"quick": 30, "deep": 10})
    default_route_limit: int = 60

    # Quotas
    quota_timezone: str = "UTC"
    default_tier: str = "free"
    tier_limits: Dict[str, TierLimits] = field(default_factory=lambda: dict(DEFAULT_TIER_LIMITS))
    idempotency_retention_days: int = 7

    # Dispatch
    provider_timeout_sec: float = 60.0
    provider_max_attempts: int = 2
    retry_initial_delay: float = 0.5
    retry_max_delay: float = 4.0
    max_prompt_chars: int = 50000

    @classmethod
    def from_settings(cls, settings) -> "MeteringConfig":
        """Load configuration from the application settings object."""
        config = cls(
            rate_limit_enabled=settings.RATE_LIMIT_ENABLED,
            redis_url=settings.REDIS_URL,
            rate_limit_window_sec=settings.RATE_LIMIT_WINDOW_SEC,
            route_limits={
                "quick": settings.RATE_LIMIT_QUICK_PER_WINDOW,
                "deep": settings.RATE_LIMIT_DEEP_PER_WINDOW,
            },
            default_route_limit=settings.RATE_LIMIT_DEFAULT_PER_WINDOW,

            quota_timezone=settings.QUOTA_TIMEZONE,
            default_tier=settings.DEFAULT_TIER.lower(),
            tier_limits={
                "free": TierLimits(
                    settings.FREE_QUICK_DAILY,
                    settings.FREE_DEEP_DAILY,
                    settings.FREE_TOKENS_DAILY,
                    settings.FREE_API_CALLS_DAILY,
                ),
                "pro": TierLimits(
                    settings.PRO_QUICK_DAILY,
                    settings.PRO_DEEP_DAILY,
                    settings.PRO_TOKENS_DAILY,
                    settings.PRO_API_CALLS_DAILY,
                ),
                "enterprise": TierLimits(
                    settings.ENTERPRISE_QUICK_DAILY,
                    settings.ENTERPRISE_DEEP_DAILY,
                    settings.ENTERPRISE_TOKENS_DAILY,
                    settings.ENTERPRISE_API_CALLS_DAILY,
                ),
            },
            idempotency_retention_days=settings.IDEMPOTENCY_RETENTION_DAYS,

            provider_timeout_sec=settings.PROVIDER_TIMEOUT_SEC,
            provider_max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            retry_initial_delay=settings.PROVIDER_RETRY_INITIAL_DELAY,
            retry_max_delay=settings.PROVIDER_RETRY_MAX_DELAY,
            max_prompt_chars=settings.MAX_PROMPT_CHARS,
        )
        config.validate()
        return config

    def get_route_limit(self, route_class: str) -> int:
        """Requests allowed per window for a route class."""
        return self.route_limits.get(route_class.lower(), self.default_route_limit)

    def get_tier_limits(self, tier: Optional[str]) -> TierLimits:
        tier = (tier or self.default_tier).lower()
        return self.tier_limits.get(tier, self.tier_limits[self.default_tier])

    def today(self, now: Optional[datetime] = None) -> date:
        """Current calendar day in the quota timezone."""
        tz = ZoneInfo(self.quota_timezone)
        if now is None:
            return datetime.now(tz).date()
        if now.tzinfo is None:
            now = now.replace(tzinfo=ZoneInfo("UTC"))
        return now.astimezone(tz).date()

    def validate(self) -> None:
        """Validate configuration values."""
        if self.default_tier not in self.tier_limits:
            raise ValueError(f"Invalid default_tier: {self.default_tier}. Must be one of {', '.join(TIERS)}.")

        try:
            ZoneInfo(self.quota_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid quota_timezone: {self.quota_timezone}")

        if self.rate_limit_window_sec <= 0:
            raise ValueError("rate_limit_window_sec must be positive")

        if self.provider_max_attempts < 1:
            raise ValueError("provider_max_attempts must be at least 1")

        if self.provider_timeout_sec <= 0:
            raise ValueError("provider_timeout_sec must be positive")
