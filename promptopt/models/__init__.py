"""Database models for the dispatch and metering service."""

from .base import Base
from .usage import UsageRecord, UsageCommit, QuotaOverride
from .provider_keys import UserProviderKey, UserPreference

__all__ = ["Base", "UsageRecord", "UsageCommit", "QuotaOverride", "UserProviderKey", "UserPreference"]
