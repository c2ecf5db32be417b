from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Prompt Optimizer Dispatch Service"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Database (row store for usage records and quota overrides)
    DATABASE_URL: str = "sqlite:///./promptopt.db"

    # Identity provider session tokens
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str | None = None

    # API
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Provider credentials (referenced as env:<NAME>, never passed around)
    OPENAI_API_KEY: str | None = None
    ANTHROPIC_API_KEY: str | None = None
    GOOGLE_GENERATIVE_AI_API_KEY: str | None = None
    OPENROUTER_API_KEY: str | None = None
    GROQ_API_KEY: str | None = None
    # Fernet key for user-supplied provider keys; derived from JWT_SECRET when unset
    API_KEY_ENCRYPTION_KEY: str | None = None

    # Providers
    ENABLED_PROVIDERS: List[str] = ["openrouter", "openai", "anthropic", "google", "groq"]
    PROVIDER_PRIORITY: List[str] = ["openrouter", "openai", "anthropic", "google", "groq"]
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    GOOGLE_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    EXTRA_MODELS: List[str] = []  # "provider:model" pairs allowed beyond the defaults

    # Dispatch
    PROVIDER_TIMEOUT_SEC: float = 60.0
    PROVIDER_MAX_ATTEMPTS: int = 2
    PROVIDER_RETRY_INITIAL_DELAY: float = 0.5
    PROVIDER_RETRY_MAX_DELAY: float = 4.0
    MAX_PROMPT_CHARS: int = 50000

    # Rate Limiting (fixed window, per user and route class)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_WINDOW_SEC: int = 60
    RATE_LIMIT_QUICK_PER_WINDOW: int = 30
    RATE_LIMIT_DEEP_PER_WINDOW: int = 10
    RATE_LIMIT_DEFAULT_PER_WINDOW: int = 60
    REDIS_URL: str | None = None

    # Quota Management
    QUOTA_TIMEZONE: str = "UTC"
    DEFAULT_TIER: str = "free"
    FREE_QUICK_DAILY: int = 10
    FREE_DEEP_DAILY: int = 3
    FREE_TOKENS_DAILY: int = 200000
    FREE_API_CALLS_DAILY: int = 100
    PRO_QUICK_DAILY: int = 100
    PRO_DEEP_DAILY: int = 20
    PRO_TOKENS_DAILY: int = 2000000
    PRO_API_CALLS_DAILY: int = 1000
    ENTERPRISE_QUICK_DAILY: int = 999999
    ENTERPRISE_DEEP_DAILY: int = 999999
    ENTERPRISE_TOKENS_DAILY: int = 100000000
    ENTERPRISE_API_CALLS_DAILY: int = 999999
    IDEMPOTENCY_RETENTION_DAYS: int = 7

    # Tracing
    TRACING_ENABLED: bool = False
    TRACING_EXPORTER: str = "console"
    TRACING_SERVICE_NAME: str = "promptopt"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables


settings = Settings()
