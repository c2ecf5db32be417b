"""
Dispatch Orchestrator

The one place request-level policy lives. A dispatch runs the gates in a
fixed order and stops at the first rejection:

    RECEIVED -> RATE_CHECKED -> QUOTA_CHECKED -> INVOKING -> COMMITTING -> COMPLETED

Terminal failures are VALIDATION_FAILED, RATE_LIMIT_REJECTED, QUOTA_REJECTED
and PROVIDER_FAILED. Quota is only committed after a successful provider
call; a failed commit is logged and counted but never unwinds the result.

A caller-supplied request id the user has already committed is answered
from the ledger (RATE_CHECKED -> REPLAYED) without calling the provider or
charging quota again.
"""

import time
import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from promptopt.errors import (
    DispatchError,
    LedgerCommitFailed,
    ProviderPermanent,
    ProviderTransient,
    QuotaRejected,
    RateLimitRejected,
    ValidationError,
)
from promptopt.observability.tracing import add_span_attributes, get_tracer, set_span_error, trace_span
from promptopt.providers.adapters import InvokeOptions
from promptopt.providers.catalog import SYSTEM_PROMPTS, RequestClass, get_class_defaults
from promptopt.providers.registry import ModelSelection, ProviderClient, ProviderRegistry
from promptopt.reliability.retry import retry_with_backoff
from .config import MeteringConfig
from .ledger import CommittedRequest, QuotaLedger
from .limiter import RateLimiter
from .metrics import (
    MetricsCollector,
    get_metrics_collector,
    record_commit_failed,
    record_dispatch,
    record_provider_call,
    record_provider_latency,
    record_quota_exceeded,
    record_rate_limited,
    record_tokens_used,
    update_rate_limit_remaining,
)

logger = logging.getLogger(__name__)
tracer = get_tracer("metering.dispatcher")

MAX_REQUEST_ID_LENGTH = 64


class DispatchState(Enum):
    RECEIVED = "received"
    VALIDATION_FAILED = "validation_failed"
    RATE_CHECKED = "rate_checked"
    RATE_LIMIT_REJECTED = "rate_limit_rejected"
    QUOTA_CHECKED = "quota_checked"
    QUOTA_REJECTED = "quota_rejected"
    INVOKING = "invoking"
    PROVIDER_FAILED = "provider_failed"
    COMMITTING = "committing"
    COMPLETED = "completed"
    REPLAYED = "replayed"


@dataclass
class DispatchRequest:
    """Inbound optimization request, after authentication."""
    user_id: str
    request_class: Any
    prompt_payload: str
    selection: ModelSelection = field(default_factory=ModelSelection)
    request_id: Optional[str] = None


@dataclass(frozen=True)
class DispatchResult:
    text: str
    tokens_used: int
    request_class: RequestClass
    provider: str
    model: str
    request_id: str
    attempts: int
    usage_recorded: bool
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "tokens_used": self.tokens_used,
            "request_class": self.request_class.value,
            "provider": self.provider,
            "model": self.model,
            "request_id": self.request_id,
            "attempts": self.attempts,
            "usage_recorded": self.usage_recorded,
            "replayed": self.replayed,
        }


class DispatchOrchestrator:
    """
    Composes Rate Limiter -> Quota Ledger -> Provider Registry -> Quota Ledger.

    Each call to ``dispatch`` is independent; the orchestrator holds no
    per-request state and no lock is held across the provider call.
    """

    def __init__(
        self,
        config: MeteringConfig,
        limiter: RateLimiter,
        ledger: QuotaLedger,
        registry: ProviderRegistry,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.limiter = limiter
        self.ledger = ledger
        self.registry = registry
        self.metrics = metrics or get_metrics_collector()

    def _transition(self, span, request_id: str, state: DispatchState) -> None:
        logger.debug(f"Dispatch {request_id}: {state.value}")
        add_span_attributes(span, {"dispatch.state": state.value})

    def _validate(self, request: DispatchRequest) -> RequestClass:
        request_class = RequestClass.parse(request.request_class)

        if not request.user_id or not str(request.user_id).strip():
            raise ValidationError("userId", "An authenticated user id is required")

        payload = request.prompt_payload
        if not isinstance(payload, str) or not payload.strip():
            raise ValidationError("promptPayload", "Prompt must not be empty")
        if len(payload) > self.config.max_prompt_chars:
            raise ValidationError(
                "promptPayload",
                f"Prompt is too long ({len(payload)} characters, maximum {self.config.max_prompt_chars})",
            )

        if request.request_id is not None:
            if not request.request_id.strip() or len(request.request_id) > MAX_REQUEST_ID_LENGTH:
                raise ValidationError(
                    "requestId",
                    f"Request id must be 1-{MAX_REQUEST_ID_LENGTH} characters",
                )

        return request_class

    def dispatch(self, request: DispatchRequest, now: Optional[datetime] = None) -> DispatchResult:
        """
        Run one optimization request through every gate.

        Args:
            request: The inbound request
            now: Reference time for the quota day (defaults to the current time)

        Returns:
            DispatchResult

        Raises:
            ValidationError: malformed input
            RateLimitRejected: burst limit reached; carries retry_after_seconds
            QuotaRejected: daily ceiling reached; carries the dimension
            ProviderUnavailable: selection cannot be resolved to a usable provider
            ProviderPermanent: provider failed permanently or retries were exhausted
        """
        request_id = request.request_id or str(uuid.uuid4())
        # "today" is fixed once so a request straddling midnight stays on one record
        day = self.config.today(now)
        class_label = "invalid"

        with trace_span(tracer, "dispatch", {
            "dispatch.request_id": request_id,
            "dispatch.user_id": str(request.user_id),
            "dispatch.request_class": str(getattr(request.request_class, "value", request.request_class)),
            "dispatch.day": day.isoformat(),
        }) as span:
            self._transition(span, request_id, DispatchState.RECEIVED)
            try:
                request_class = self._validate(request)
                class_label = request_class.value

                self._gate_rate_limit(span, request, request_id, request_class)

                prior = self._find_prior_commit(request, request_class)
                if prior is not None:
                    self._transition(span, request_id, DispatchState.REPLAYED)
                    record_dispatch(class_label, DispatchState.REPLAYED.value, self.metrics)
                    logger.info(f"Dispatch {request_id} replayed for user={request.user_id} from the ledger")
                    return _replay_result(prior)

                self._gate_quota(span, request, request_id, request_class, day)

                client = self.registry.resolve(request.selection, request_class, user_id=request.user_id)
                add_span_attributes(span, {
                    "dispatch.provider": client.provider_name,
                    "dispatch.model": client.model_id,
                })

                self._transition(span, request_id, DispatchState.INVOKING)
                completion, attempts = self._invoke(client, request, request_class)

                self._transition(span, request_id, DispatchState.COMMITTING)
                usage_recorded = self._commit(request, request_id, request_class, client, completion, day)

            except DispatchError as e:
                failed = _failure_state(e)
                self._transition(span, request_id, failed)
                add_span_attributes(span, {"dispatch.error_kind": e.kind})
                set_span_error(span, e)
                record_dispatch(class_label, failed.value, self.metrics)
                raise

            self._transition(span, request_id, DispatchState.COMPLETED)
            add_span_attributes(span, {
                "dispatch.tokens_used": completion.tokens_used,
                "dispatch.attempts": attempts,
                "dispatch.usage_recorded": usage_recorded,
            })
            record_dispatch(class_label, DispatchState.COMPLETED.value, self.metrics)

        logger.info(
            f"Dispatch {request_id} completed for user={request.user_id} "
            f"({request_class.value} via {client.provider_name}/{client.model_id}, "
            f"{completion.tokens_used} tokens, {attempts} attempt(s))"
        )

        return DispatchResult(
            text=completion.text,
            tokens_used=completion.tokens_used,
            request_class=request_class,
            provider=client.provider_name,
            model=client.model_id,
            request_id=request_id,
            attempts=attempts,
            usage_recorded=usage_recorded,
        )

    def _gate_rate_limit(self, span, request: DispatchRequest, request_id: str, request_class: RequestClass) -> None:
        route_class = request_class.value
        decision = self.limiter.check_route(route_class, f"user:{request.user_id}")
        add_span_attributes(span, {
            "dispatch.ratelimit.allowed": decision.allowed,
            "dispatch.ratelimit.remaining": decision.remaining,
        })
        update_rate_limit_remaining(route_class, decision.remaining, self.metrics)

        if not decision.allowed:
            record_rate_limited(route_class, self.metrics)
            raise RateLimitRejected(decision.retry_after_seconds, decision.limit, decision.window_seconds)

        self._transition(span, request_id, DispatchState.RATE_CHECKED)

    def _find_prior_commit(self, request: DispatchRequest, request_class: RequestClass) -> Optional[CommittedRequest]:
        """A caller-supplied request id this user already committed, if any."""
        if request.request_id is None:
            return None

        prior = self.ledger.find_commit(request.user_id, request.request_id)
        if prior is not None and prior.request_class is not request_class:
            raise ValidationError(
                "requestId",
                f"Request id was already used for a {prior.request_class.value} request",
            )
        return prior

    def _gate_quota(self, span, request: DispatchRequest, request_id: str, request_class: RequestClass, day) -> None:
        decision = self.ledger.check_capacity(request.user_id, request_class, day)
        add_span_attributes(span, {
            "dispatch.quota.allowed": decision.allowed,
            "dispatch.quota.tier": decision.limits.tier,
        })

        if not decision.allowed:
            record_quota_exceeded(decision.dimension, self.metrics)
            add_span_attributes(span, {"dispatch.quota.dimension": decision.dimension})
            raise decision.to_error()

        self._transition(span, request_id, DispatchState.QUOTA_CHECKED)

    def _invoke(self, client: ProviderClient, request: DispatchRequest, request_class: RequestClass):
        """Call the provider, retrying transient failures with backoff."""
        defaults = get_class_defaults(request_class, client.config.provider_name)
        options = InvokeOptions(
            max_tokens=defaults.max_tokens,
            temperature=defaults.temperature,
            timeout=self.config.provider_timeout_sec,
            system_prompt=SYSTEM_PROMPTS[request_class],
        )
        provider = client.provider_name
        attempts = 0

        @retry_with_backoff(
            max_attempts=self.config.provider_max_attempts,
            initial_delay=self.config.retry_initial_delay,
            max_delay=self.config.retry_max_delay,
            retry_on=[ProviderTransient],
        )
        def call_provider():
            nonlocal attempts
            attempts += 1
            start_time = time.time()
            try:
                completion = client.invoke(request.prompt_payload, options)
            except ProviderTransient:
                record_provider_call(provider, "transient", self.metrics)
                raise
            except ProviderPermanent:
                record_provider_call(provider, "permanent", self.metrics)
                raise

            record_provider_call(provider, "success", self.metrics)
            record_provider_latency(provider, (time.time() - start_time) * 1000, self.metrics)
            return completion

        try:
            completion = call_provider()
        except ProviderTransient as e:
            raise ProviderPermanent(
                e.provider_name,
                f"gave up after {attempts} attempt(s): {e.cause}",
                e.status_code,
            ) from e

        record_tokens_used(provider, completion.tokens_used, self.metrics)
        return completion, attempts

    def _commit(self, request: DispatchRequest, request_id: str, request_class: RequestClass, client, completion, day) -> bool:
        try:
            committed = self.ledger.commit(
                request.user_id,
                request_class,
                completion.tokens_used,
                request_id,
                day,
                provider=client.provider_name,
                model=client.model_id,
                text=completion.text,
            )
        except LedgerCommitFailed as e:
            # The completion already exists; undercounting is reconciled out-of-band
            logger.error(f"Usage not recorded for user={request.user_id}: {e.detail}")
            record_commit_failed(self.metrics)
            return False

        if not committed:
            logger.info(f"Request {request_id} was already committed; counters unchanged")
        return True


def _failure_state(error: DispatchError) -> DispatchState:
    if isinstance(error, ValidationError):
        return DispatchState.VALIDATION_FAILED
    if isinstance(error, RateLimitRejected):
        return DispatchState.RATE_LIMIT_REJECTED
    if isinstance(error, QuotaRejected):
        return DispatchState.QUOTA_REJECTED
    return DispatchState.PROVIDER_FAILED


def _replay_result(prior: CommittedRequest) -> DispatchResult:
    return DispatchResult(
        text=prior.text or "",
        tokens_used=prior.tokens_used,
        request_class=prior.request_class,
        provider=prior.provider or "",
        model=prior.model or "",
        request_id=prior.request_id,
        attempts=0,
        usage_recorded=True,
        replayed=True,
    )
