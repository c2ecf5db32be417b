"""
Dispatch Error Taxonomy

Every rejection or failure the dispatch path can produce. Each error knows its
HTTP status and renders to the structured ``{kind, detail, ...}`` body returned
to callers.
"""

from typing import Any, Dict, Optional


class DispatchError(Exception):
    """Base class for all dispatch-path errors."""

    kind = "DispatchError"
    http_status = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"kind": self.kind, "detail": self.detail}
        body.update(self.extra())
        return body


class ValidationError(DispatchError):
    """Malformed input, reported with the offending field."""

    kind = "ValidationError"
    http_status = 400

    def __init__(self, field: str, detail: Optional[str] = None):
        super().__init__(detail or f"Invalid value for '{field}'")
        self.field = field

    def extra(self) -> Dict[str, Any]:
        return {"field": self.field}


class RateLimitRejected(DispatchError):
    """Too many requests in the current window."""

    kind = "RateLimitRejected"
    http_status = 429

    def __init__(self, retry_after_seconds: int, limit: int, window_seconds: int):
        super().__init__(
            f"Rate limit of {limit} requests per {window_seconds}s reached. "
            f"Retry in {retry_after_seconds}s."
        )
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.window_seconds = window_seconds

    def extra(self) -> Dict[str, Any]:
        return {"retryAfterSeconds": self.retry_after_seconds}


class QuotaRejected(DispatchError):
    """A daily quota ceiling would be exceeded."""

    kind = "QuotaRejected"
    http_status = 402

    def __init__(self, dimension: str, used: int, limit: int):
        super().__init__(
            f"Daily {dimension} quota exhausted ({used}/{limit}). "
            f"Quota resets at the start of the next day."
        )
        self.dimension = dimension
        self.used = used
        self.limit = limit

    def extra(self) -> Dict[str, Any]:
        return {"dimension": self.dimension, "used": self.used, "limit": self.limit}


class ProviderUnavailable(DispatchError):
    """The selected provider/model is unknown, disabled or has no credentials."""

    kind = "ProviderUnavailable"
    http_status = 503

    def __init__(self, provider_name: str, reason: str):
        super().__init__(f"Provider '{provider_name}' is unavailable: {reason}")
        self.provider_name = provider_name
        self.reason = reason

    def extra(self) -> Dict[str, Any]:
        return {"provider": self.provider_name}


class ProviderError(DispatchError):
    """Base for errors raised while invoking a provider."""

    http_status = 502

    def __init__(self, provider_name: str, cause: str, status_code: Optional[int] = None):
        super().__init__(f"Provider '{provider_name}' call failed: {cause}")
        self.provider_name = provider_name
        self.cause = cause
        self.status_code = status_code

    def extra(self) -> Dict[str, Any]:
        return {"provider": self.provider_name}


class ProviderTransient(ProviderError):
    """Network error, timeout, 408/429 or 5xx. Eligible for retry."""

    kind = "ProviderTransient"


class ProviderPermanent(ProviderError):
    """Invalid request, auth failure, content policy or exhausted retries. Never retried."""

    kind = "ProviderPermanent"


class LedgerCommitFailed(DispatchError):
    """Usage could not be recorded. Logged; never unwinds a delivered result."""

    kind = "LedgerCommitFailed"

    def __init__(self, request_id: str, cause: str):
        super().__init__(f"Failed to record usage for request {request_id}: {cause}")
        self.request_id = request_id
        self.cause = cause
