"""
Usage Metering & Dispatch

Rate limiting, daily quotas and the dispatch orchestrator that composes them
with the provider registry.
"""

from .config import MeteringConfig, TierLimits
from .limiter import RateLimiter, RateDecision
from .ledger import QuotaLedger, QuotaLimits, CapacityDecision
from .dispatcher import DispatchOrchestrator, DispatchRequest, DispatchResult, DispatchState
from .reporting import UsageReporter, UsageSummary
from .metrics import MetricsCollector, get_metrics_collector

__all__ = [
    "MeteringConfig",
    "TierLimits",
    "RateLimiter",
    "RateDecision",
    "QuotaLedger",
    "QuotaLimits",
    "CapacityDecision",
    "DispatchOrchestrator",
    "DispatchRequest",
    "DispatchResult",
    "DispatchState",
    "UsageReporter",
    "UsageSummary",
    "MetricsCollector",
    "get_metrics_collector",
]
