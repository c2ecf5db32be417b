"""
Component wiring for the HTTP surface and the CLI.

Components are built lazily from settings on first use and shared by every
request. Tests replace them through ``app.dependency_overrides`` or
``reset_services``.
"""

import logging
from typing import Optional

from promptopt.config import settings
from promptopt.metering.config import MeteringConfig
from promptopt.metering.dispatcher import DispatchOrchestrator
from promptopt.metering.ledger import QuotaLedger
from promptopt.metering.limiter import RateLimiter
from promptopt.metering.metrics import MetricsCollector, get_metrics_collector
from promptopt.metering.reporting import UsageReporter
from promptopt.providers.credentials import CredentialStore
from promptopt.providers.keystore import KeyCipher, UserKeyStore
from promptopt.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

_metering_config: Optional[MeteringConfig] = None
_rate_limiter: Optional[RateLimiter] = None
_ledger: Optional[QuotaLedger] = None
_key_store: Optional[UserKeyStore] = None
_registry: Optional[ProviderRegistry] = None
_orchestrator: Optional[DispatchOrchestrator] = None


def get_metering_config() -> MeteringConfig:
    global _metering_config

    if _metering_config is None:
        _metering_config = MeteringConfig.from_settings(settings)

    return _metering_config


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter

    if _rate_limiter is None:
        _rate_limiter = RateLimiter(get_metering_config())

    return _rate_limiter


def get_ledger() -> QuotaLedger:
    global _ledger

    if _ledger is None:
        _ledger = QuotaLedger(get_metering_config())

    return _ledger


def get_key_store() -> UserKeyStore:
    global _key_store

    if _key_store is None:
        _key_store = UserKeyStore(KeyCipher.from_settings(settings))

    return _key_store


def get_registry() -> ProviderRegistry:
    global _registry

    if _registry is None:
        credentials = CredentialStore(settings, user_keys=get_key_store())
        _registry = ProviderRegistry.from_settings(settings, credentials=credentials)
        logger.info(f"Provider registry loaded with {len(_registry.list_configs())} enabled models")

    return _registry


def get_metrics() -> MetricsCollector:
    return get_metrics_collector()


def get_orchestrator() -> DispatchOrchestrator:
    global _orchestrator

    if _orchestrator is None:
        _orchestrator = DispatchOrchestrator(
            config=get_metering_config(),
            limiter=get_rate_limiter(),
            ledger=get_ledger(),
            registry=get_registry(),
            metrics=get_metrics(),
        )

    return _orchestrator


def get_reporter() -> UsageReporter:
    return UsageReporter(get_ledger(), get_metering_config())


def reset_services() -> None:
    """Drop every cached component so the next call rebuilds it from settings."""
    global _metering_config, _rate_limiter, _ledger, _key_store, _registry, _orchestrator

    _metering_config = None
    _rate_limiter = None
    _ledger = None
    _key_store = None
    _registry = None
    _orchestrator = None
