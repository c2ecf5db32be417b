from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, Index, UniqueConstraint
from promptopt.models.base import Base


class UsageRecord(Base):
    """One row per (user, calendar day). Counters only ever grow."""

    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    day = Column(Date, nullable=False)

    quick_count = Column(Integer, default=0, nullable=False)
    deep_count = Column(Integer, default=0, nullable=False)
    tokens_used = Column(Integer, default=0, nullable=False)
    api_calls = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "day", name="uq_usage_user_day"),
    )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "date": self.day.isoformat(),
            "quick_count": self.quick_count,
            "deep_count": self.deep_count,
            "tokens_used": self.tokens_used,
            "api_calls": self.api_calls,
        }


class UsageCommit(Base):
    """
    Idempotency keys for ledger commits, one per (user, logical request).

    The delivered completion is kept alongside the key so a repeated request
    id can be answered without calling the provider again.
    """

    __tablename__ = "usage_commits"

    user_id = Column(String, primary_key=True)
    request_id = Column(String(64), primary_key=True)
    day = Column(Date, nullable=False)
    request_class = Column(String(16), nullable=False)
    tokens_used = Column(Integer, default=0, nullable=False)
    provider = Column(String(32), nullable=True)
    model = Column(String, nullable=True)
    text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_usage_commit_day", "day"),
    )


class QuotaOverride(Base):
    """Per-user tier and ceiling overrides. NULL columns fall back to the tier default."""

    __tablename__ = "quota_overrides"

    user_id = Column(String, primary_key=True)
    tier = Column(String(32), nullable=True)
    quick_daily_max = Column(Integer, nullable=True)
    deep_daily_max = Column(Integer, nullable=True)
    token_daily_max = Column(Integer, nullable=True)
    api_calls_daily_max = Column(Integer, nullable=True)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
