from pydantic import BaseModel, Field
from typing import Optional


class ModelSelectionIn(BaseModel):
    """User-chosen provider/model. Either may be omitted."""
    provider: Optional[str] = None
    model: Optional[str] = None


class OptimizeRequest(BaseModel):
    """Prompt optimization request"""
    request_class: Optional[str] = Field(None, alias="requestClass")
    selection: ModelSelectionIn = Field(default_factory=ModelSelectionIn)
    prompt_payload: str = Field(..., alias="promptPayload")
    request_id: Optional[str] = Field(None, alias="requestId")

    class Config:
        populate_by_name = True


class OptimizeResponse(BaseModel):
    """Completed optimization"""
    text: str
    tokens_used: int = Field(..., alias="tokensUsed")
    request_class: str = Field(..., alias="requestClass")
    provider: str
    model: str
    request_id: str = Field(..., alias="requestId")
    usage_recorded: bool = Field(..., alias="usageRecorded")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Structured error body returned for every rejection"""
    kind: str
    detail: str
    retry_after_seconds: Optional[int] = Field(None, alias="retryAfterSeconds")
    dimension: Optional[str] = None
    provider: Optional[str] = None
    field: Optional[str] = None

    class Config:
        populate_by_name = True


class ProviderInfo(BaseModel):
    provider: str
    model: str
    enabled: bool
    priority: int
