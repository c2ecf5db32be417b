from datetime import date, datetime, timezone

import pytest

from promptopt.config import Settings
from promptopt.metering.config import MeteringConfig


def test_from_settings_maps_tiers_and_routes():
    settings = Settings(PRO_DEEP_DAILY=25, RATE_LIMIT_QUICK_PER_WINDOW=12, DEFAULT_TIER="PRO")
    config = MeteringConfig.from_settings(settings)

    assert config.default_tier == "pro"
    assert config.get_tier_limits(None).deep_daily_max == 25
    assert config.get_route_limit("quick") == 12
    assert config.get_route_limit("deep") == 10


def test_unknown_tier_falls_back_to_default():
    config = MeteringConfig()
    assert config.get_tier_limits("platinum") == config.tier_limits["free"]


def test_today_uses_quota_timezone():
    now = datetime(2025, 3, 14, 23, 30, tzinfo=timezone.utc)

    assert MeteringConfig(quota_timezone="UTC").today(now) == date(2025, 3, 14)
    assert MeteringConfig(quota_timezone="Asia/Tokyo").today(now) == date(2025, 3, 15)


@pytest.mark.parametrize("overrides", [
    {"default_tier": "gold"},
    {"quota_timezone": "Mars/Olympus"},
    {"rate_limit_window_sec": 0},
    {"provider_max_attempts": 0},
    {"provider_timeout_sec": 0},
])
def test_validate_rejects_bad_values(overrides):
    with pytest.raises(ValueError):
        MeteringConfig(**overrides).validate()
