"""
Provider & Request Class Catalog

Static knowledge about the supported providers and the per-request-class model
defaults (model id, output token ceiling, sampling temperature).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict

from promptopt.errors import ValidationError


class ProviderName(Enum):
    """Supported AI providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OPENROUTER = "openrouter"
    GROQ = "groq"

    @classmethod
    def parse(cls, value: str) -> "ProviderName":
        """Parse a provider tag, accepting the legacy 'gemini' alias. Raises ValueError."""
        normalized = (value or "").strip().lower()
        if normalized == "gemini":
            normalized = cls.GOOGLE.value
        return cls(normalized)


class RequestClass(Enum):
    """Caller-declared request category. Selects model defaults and the quota dimension charged."""
    QUICK = "quick"
    DEEP = "deep"

    @classmethod
    def parse(cls, value) -> "RequestClass":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                "requestClass",
                f"Unknown request class '{value}'. Expected 'quick' or 'deep'",
            )


@dataclass(frozen=True)
class ModelDefaults:
    """Default model and sampling settings for a provider within a request class."""
    model: str
    max_tokens: int
    temperature: float


# Quick optimizations favour small/fast models to keep cost and latency down;
# deep optimizations use the stronger models.
CLASS_DEFAULTS: Dict[RequestClass, Dict[ProviderName, ModelDefaults]] = {
    RequestClass.QUICK: {
        ProviderName.OPENROUTER: ModelDefaults("google/gemini-2.0-flash-exp:free", 4096, 0.7),
        ProviderName.OPENAI: ModelDefaults("gpt-4o-mini", 4096, 0.7),
        ProviderName.ANTHROPIC: ModelDefaults("claude-3-5-haiku-20241022", 4096, 0.7),
        ProviderName.GOOGLE: ModelDefaults("gemini-2.0-flash-exp", 4096, 0.7),
        ProviderName.GROQ: ModelDefaults("llama-3.1-8b-instant", 4096, 0.7),
    },
    RequestClass.DEEP: {
        ProviderName.OPENROUTER: ModelDefaults("anthropic/claude-3.5-sonnet", 8192, 0.5),
        ProviderName.OPENAI: ModelDefaults("gpt-4o", 8192, 0.5),
        ProviderName.ANTHROPIC: ModelDefaults("claude-3-5-sonnet-20241022", 8192, 0.5),
        ProviderName.GOOGLE: ModelDefaults("gemini-1.5-pro", 8192, 0.5),
        ProviderName.GROQ: ModelDefaults("llama-3.3-70b-versatile", 8192, 0.5),
    },
}


def get_class_defaults(request_class: RequestClass, provider: ProviderName) -> ModelDefaults:
    return CLASS_DEFAULTS[request_class][provider]


# Credential reference used for each provider's platform key.
DEFAULT_KEY_REFERENCES: Dict[ProviderName, str] = {
    ProviderName.OPENAI: "env:OPENAI_API_KEY",
    ProviderName.ANTHROPIC: "env:ANTHROPIC_API_KEY",
    ProviderName.GOOGLE: "env:GOOGLE_GENERATIVE_AI_API_KEY",
    ProviderName.OPENROUTER: "env:OPENROUTER_API_KEY",
    ProviderName.GROQ: "env:GROQ_API_KEY",
}

# Expected leading characters of a user-supplied key, checked before storing it
KEY_PREFIXES: Dict[ProviderName, str] = {
    ProviderName.OPENROUTER: "sk-or-",
    ProviderName.OPENAI: "sk-",
    ProviderName.ANTHROPIC: "sk-ant-",
    ProviderName.GOOGLE: "AI",
    ProviderName.GROQ: "gsk_",
}


SYSTEM_PROMPTS: Dict[RequestClass, str] = {
    RequestClass.QUICK: (
        "You are a prompt engineering assistant. Rewrite the user's prompt so it is "
        "clear, specific and well structured while preserving its intent. "
        "Return only the improved prompt."
    ),
    RequestClass.DEEP: (
        "You are an expert prompt engineer. Analyse the user's prompt for ambiguity, "
        "missing context, output format and constraints, then produce a thoroughly "
        "improved version that keeps the original goal. Return only the improved prompt."
    ),
}
