from pydantic import BaseModel, Field
from typing import List, Optional


class ApiKeyIn(BaseModel):
    """A user-supplied provider key"""
    provider: str
    api_key: str = Field(..., min_length=1)
    display_name: Optional[str] = Field(None, max_length=100)


class ApiKeyInfo(BaseModel):
    provider: str
    is_configured: bool
    is_active: bool
    display_name: Optional[str] = None
    masked_key: str


class ApiKeySettings(BaseModel):
    api_keys: List[ApiKeyInfo]
    default_provider: Optional[str] = None


class DefaultProviderIn(BaseModel):
    provider: str
