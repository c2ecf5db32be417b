from pydantic import BaseModel, Field
from typing import List, Optional


class UsageDay(BaseModel):
    """One day of usage for a user"""
    user_id: str
    date: str
    quick_count: int
    deep_count: int
    tokens_used: int
    api_calls: int


class UsageTotals(BaseModel):
    total_quick: int
    total_deep: int
    total_tokens: int
    total_api_calls: int


class QuotaResponse(BaseModel):
    """Effective daily limits"""
    tier: str
    quick_daily_max: int
    deep_daily_max: int
    token_daily_max: int
    api_calls_daily_max: int


class QuotaStatus(QuotaResponse):
    """Limits plus what is left today"""
    quick_remaining: int
    deep_remaining: int
    tokens_remaining: int
    api_calls_remaining: int


class UsageResponse(BaseModel):
    today: UsageDay
    quota: QuotaStatus
    summary: UsageTotals
    history: List[UsageDay]


class QuotaUpdate(BaseModel):
    """Admin override of a user's tier and ceilings. Omitted fields are left unchanged."""
    tier: Optional[str] = None
    quick_daily_max: Optional[int] = Field(None, ge=0)
    deep_daily_max: Optional[int] = Field(None, ge=0)
    token_daily_max: Optional[int] = Field(None, ge=0)
    api_calls_daily_max: Optional[int] = Field(None, ge=0)
