"""
Provider Invocation Adapters

One plain function per provider wire format, all sharing the same contract:

    adapter(config, api_key, prompt, options) -> Completion

Each adapter normalizes the provider's response shape and token accounting into
``Completion(text, tokens_used)`` and classifies failures into
``ProviderTransient`` (network, timeout, 408/429/5xx) or ``ProviderPermanent``
(everything else). Adapters never retry.

Token units per adapter:
- openai / openrouter: ``usage.total_tokens`` (provider-native tokens)
- anthropic: ``usage.input_tokens + usage.output_tokens``
- google: ``usageMetadata.totalTokenCount``; estimated from characters when absent
- groq: ``usage.total_tokens`` from the groq SDK
"""

import math
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import groq
import requests

from promptopt.errors import ProviderPermanent, ProviderTransient
from promptopt.providers.catalog import ProviderName

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# 529 is Anthropic's "overloaded" status
TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504, 529}

# Rough characters-per-token ratio used only when a provider reports no usage
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class InvokeOptions:
    """Per-call options supplied by the orchestrator."""
    max_tokens: int
    temperature: float
    timeout: float
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class Completion:
    """Normalized provider response."""
    text: str
    tokens_used: int


def estimate_tokens(*texts: str) -> int:
    """Character-based token estimate for providers that omit usage."""
    chars = sum(len(t or "") for t in texts)
    return math.ceil(chars / CHARS_PER_TOKEN)


def _is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES or status_code >= 500


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:300]

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return str(body)[:300]


def _post_json(
    provider: str,
    url: str,
    payload: Dict[str, Any],
    headers: Dict[str, str],
    timeout: float,
) -> Dict[str, Any]:
    """POST a JSON payload and return the decoded body, classifying failures."""
    try:
        response = requests.post(url, json=payload, headers=headers, timeout=timeout)
    except requests.Timeout as e:
        raise ProviderTransient(provider, f"timeout after {timeout}s: {e}")
    except requests.ConnectionError as e:
        raise ProviderTransient(provider, f"connection error: {e}")
    except requests.RequestException as e:
        raise ProviderPermanent(provider, f"request error: {e}")

    if response.status_code >= 400:
        message = f"HTTP {response.status_code}: {_error_message(response)}"
        if _is_transient_status(response.status_code):
            raise ProviderTransient(provider, message, status_code=response.status_code)
        raise ProviderPermanent(provider, message, status_code=response.status_code)

    try:
        body = response.json()
    except ValueError:
        raise ProviderPermanent(provider, "response body is not valid JSON", status_code=response.status_code)

    if not isinstance(body, dict):
        raise ProviderPermanent(provider, "unexpected response shape: body is not an object")
    return body


def invoke_openai_compatible(config, api_key: str, prompt: str, options: InvokeOptions) -> Completion:
    """OpenAI chat completions; also serves OpenRouter, which speaks the same API."""
    provider = config.provider_name.value
    messages = []
    if options.system_prompt:
        messages.append({"role": "system", "content": options.system_prompt})
    messages.append({"role": "user", "content": prompt})

    headers = {"Authorization": f"Bearer {api_key}"}
    if config.provider_name == ProviderName.OPENROUTER:
        headers["X-Title"] = "promptopt"

    body = _post_json(
        provider,
        f"{config.base_url.rstrip('/')}/chat/completions",
        {
            "model": config.model_id,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        },
        headers,
        options.timeout,
    )

    try:
        choice = body["choices"][0]
        text = choice["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        raise ProviderPermanent(provider, "unexpected response shape: missing choices[0].message")

    if choice.get("finish_reason") == "content_filter":
        raise ProviderPermanent(provider, "completion blocked by content policy")

    usage = body.get("usage") or {}
    tokens = usage.get("total_tokens")
    if tokens is None and ("prompt_tokens" in usage or "completion_tokens" in usage):
        tokens = (usage.get("prompt_tokens") or 0) + (usage.get("completion_tokens") or 0)
    if tokens is None:
        tokens = estimate_tokens(options.system_prompt or "", prompt, text)

    return _finish(provider, text, tokens)


def invoke_anthropic(config, api_key: str, prompt: str, options: InvokeOptions) -> Completion:
    """Anthropic Messages API."""
    provider = config.provider_name.value
    payload = {
        "model": config.model_id,
        "max_tokens": options.max_tokens,
        "temperature": options.temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    if options.system_prompt:
        payload["system"] = options.system_prompt

    body = _post_json(
        provider,
        f"{config.base_url.rstrip('/')}/messages",
        payload,
        {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION},
        options.timeout,
    )

    blocks = body.get("content")
    if not isinstance(blocks, list):
        raise ProviderPermanent(provider, "unexpected response shape: missing content blocks")
    text = "".join(
        b.get("text") or "" for b in blocks if isinstance(b, dict) and b.get("type") == "text"
    )

    usage = body.get("usage") or {}
    tokens = (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0)
    if not usage:
        tokens = estimate_tokens(options.system_prompt or "", prompt, text)

    return _finish(provider, text, tokens)


def invoke_google(config, api_key: str, prompt: str, options: InvokeOptions) -> Completion:
    """Google Generative Language generateContent."""
    provider = config.provider_name.value
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {
            "maxOutputTokens": options.max_tokens,
            "temperature": options.temperature,
        },
    }
    if options.system_prompt:
        payload["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}

    body = _post_json(
        provider,
        f"{config.base_url.rstrip('/')}/models/{config.model_id}:generateContent",
        payload,
        {"x-goog-api-key": api_key},
        options.timeout,
    )

    block_reason = (body.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise ProviderPermanent(provider, f"prompt blocked by content policy ({block_reason})")

    candidates = body.get("candidates") or []
    if not candidates:
        raise ProviderPermanent(provider, "unexpected response shape: no candidates")
    candidate = candidates[0]
    if candidate.get("finishReason") == "SAFETY":
        raise ProviderPermanent(provider, "completion blocked by content policy")

    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(p.get("text") or "" for p in parts if isinstance(p, dict))

    tokens = (body.get("usageMetadata") or {}).get("totalTokenCount")
    if tokens is None:
        tokens = estimate_tokens(options.system_prompt or "", prompt, text)

    return _finish(provider, text, tokens)


def invoke_groq(config, api_key: str, prompt: str, options: InvokeOptions) -> Completion:
    """Groq chat completions through the groq SDK."""
    provider = config.provider_name.value
    messages = []
    if options.system_prompt:
        messages.append({"role": "system", "content": options.system_prompt})
    messages.append({"role": "user", "content": prompt})

    # Retries belong to the orchestrator, so the SDK's own retry loop is off
    client = groq.Groq(api_key=api_key, timeout=options.timeout, max_retries=0)
    try:
        response = client.chat.completions.create(
            model=config.model_id,
            messages=messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
    except groq.APIStatusError as e:
        message = f"HTTP {e.status_code}: {e.message}"
        if _is_transient_status(e.status_code):
            raise ProviderTransient(provider, message, status_code=e.status_code)
        raise ProviderPermanent(provider, message, status_code=e.status_code)
    except groq.APIConnectionError as e:
        # APITimeoutError is a subclass of APIConnectionError
        raise ProviderTransient(provider, f"connection error: {e}")

    text = response.choices[0].message.content or ""
    usage = response.usage
    tokens = usage.total_tokens if usage else estimate_tokens(options.system_prompt or "", prompt, text)

    return _finish(provider, text, tokens)


def _finish(provider: str, text: str, tokens: Any) -> Completion:
    text = (text or "").strip()
    if not text:
        raise ProviderPermanent(provider, "provider returned an empty completion")
    return Completion(text=text, tokens_used=max(0, int(tokens)))


Adapter = Callable[[Any, str, str, InvokeOptions], Completion]

ADAPTERS: Dict[ProviderName, Adapter] = {
    ProviderName.OPENAI: invoke_openai_compatible,
    ProviderName.OPENROUTER: invoke_openai_compatible,
    ProviderName.ANTHROPIC: invoke_anthropic,
    ProviderName.GOOGLE: invoke_google,
    ProviderName.GROQ: invoke_groq,
}
