"""
Provider Registry

Holds the configured AI providers and resolves a user's model selection to a
callable client. Resolution fails closed: an unknown, disabled or
credential-less provider/model raises ProviderUnavailable before any network
traffic happens.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from promptopt.errors import ProviderUnavailable
from promptopt.providers.adapters import ADAPTERS, Adapter, Completion, InvokeOptions
from promptopt.providers.catalog import (
    CLASS_DEFAULTS,
    DEFAULT_KEY_REFERENCES,
    ProviderName,
    RequestClass,
    get_class_defaults,
)
from promptopt.providers.credentials import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for one provider/model pair."""
    provider_name: ProviderName
    model_id: str
    api_key_reference: str
    is_enabled: bool = True
    priority: int = 100  # Lower = higher priority
    base_url: Optional[str] = None

    def to_public_dict(self) -> Dict[str, object]:
        """Serializable view without the credential reference."""
        return {
            "provider": self.provider_name.value,
            "model": self.model_id,
            "enabled": self.is_enabled,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class ModelSelection:
    """A user's chosen provider/model. Either part may be left to the defaults."""
    provider: Optional[str] = None
    model: Optional[str] = None


class ProviderClient:
    """Invocation handle for one resolved provider config."""

    def __init__(
        self,
        config: ProviderConfig,
        credentials: CredentialStore,
        adapter: Adapter,
        user_id: Optional[str] = None,
    ):
        self.config = config
        self._credentials = credentials
        self._adapter = adapter
        self._user_id = user_id

    @property
    def provider_name(self) -> str:
        return self.config.provider_name.value

    @property
    def model_id(self) -> str:
        return self.config.model_id

    def invoke(self, prompt_payload: str, options: InvokeOptions) -> Completion:
        """
        Call the provider once.

        Raises:
            ProviderTransient: network failure, timeout, 408/429/5xx
            ProviderPermanent: any other failure
            ProviderUnavailable: the credential vanished after resolution
        """
        api_key = self._credentials.resolve_for(
            self._user_id, self.config.provider_name, self.config.api_key_reference
        )
        if not api_key:
            raise ProviderUnavailable(self.provider_name, "missing credentials")

        logger.debug(f"Invoking {self.provider_name}/{self.model_id} (timeout={options.timeout}s)")
        return self._adapter(self.config, api_key, prompt_payload, options)


class ProviderRegistry:
    """Registry of provider configs keyed by (provider, model)."""

    def __init__(self, configs: Iterable[ProviderConfig], credentials: CredentialStore):
        self.credentials = credentials
        self._configs: Dict[Tuple[ProviderName, str], ProviderConfig] = {}
        for config in configs:
            self._configs[(config.provider_name, config.model_id)] = config

    @classmethod
    def from_settings(cls, settings, credentials: Optional[CredentialStore] = None) -> "ProviderRegistry":
        """
        Build the registry from application settings.

        Every provider gets the request-class default models plus any
        ``EXTRA_MODELS`` entries ("provider:model"). Priority follows the
        order of ``PROVIDER_PRIORITY``.
        """
        credentials = credentials or CredentialStore(settings)
        enabled = {ProviderName.parse(p) for p in settings.ENABLED_PROVIDERS}
        priority_order = [ProviderName.parse(p) for p in settings.PROVIDER_PRIORITY]
        base_urls = {
            ProviderName.OPENAI: settings.OPENAI_BASE_URL,
            ProviderName.OPENROUTER: settings.OPENROUTER_BASE_URL,
            ProviderName.ANTHROPIC: settings.ANTHROPIC_BASE_URL,
            ProviderName.GOOGLE: settings.GOOGLE_BASE_URL,
            ProviderName.GROQ: None,
        }

        models: Dict[ProviderName, List[str]] = {p: [] for p in ProviderName}
        for defaults in CLASS_DEFAULTS.values():
            for provider, model_defaults in defaults.items():
                if model_defaults.model not in models[provider]:
                    models[provider].append(model_defaults.model)
        for entry in settings.EXTRA_MODELS:
            provider_tag, _, model_id = entry.partition(":")
            provider = ProviderName.parse(provider_tag)
            if model_id and model_id not in models[provider]:
                models[provider].append(model_id)

        configs = []
        for provider in ProviderName:
            priority = priority_order.index(provider) if provider in priority_order else len(priority_order)
            for model_id in models[provider]:
                configs.append(ProviderConfig(
                    provider_name=provider,
                    model_id=model_id,
                    api_key_reference=DEFAULT_KEY_REFERENCES[provider],
                    is_enabled=provider in enabled,
                    priority=priority,
                    base_url=base_urls[provider],
                ))

        return cls(configs, credentials)

    def get_config(self, provider: ProviderName, model_id: str) -> Optional[ProviderConfig]:
        return self._configs.get((provider, model_id))

    def list_configs(self, include_disabled: bool = False) -> List[ProviderConfig]:
        """Configs ordered by priority, then provider and model."""
        configs = [
            c for c in self._configs.values()
            if include_disabled or c.is_enabled
        ]
        return sorted(configs, key=lambda c: (c.priority, c.provider_name.value, c.model_id))

    def has_credentials(self, config: ProviderConfig, user_id: Optional[str] = None) -> bool:
        """True when the user's own key or the platform key is available."""
        secret = self.credentials.resolve_for(user_id, config.provider_name, config.api_key_reference)
        return secret is not None

    def is_usable(self, config: ProviderConfig, user_id: Optional[str] = None) -> bool:
        return config.is_enabled and self.has_credentials(config, user_id)

    def default_provider(self, request_class: RequestClass, user_id: Optional[str] = None) -> ProviderName:
        """
        The user's stored default provider when it is usable, else the
        highest-priority enabled provider whose class default model has credentials.
        """
        preferred = self.credentials.default_provider_for(user_id)
        if preferred is not None:
            config = self.get_config(preferred, get_class_defaults(request_class, preferred).model)
            if config and self.is_usable(config, user_id):
                return preferred
            logger.info(f"Default provider {preferred.value} of user={user_id} is unusable, using priority order")

        candidates = []
        for provider in ProviderName:
            config = self.get_config(provider, get_class_defaults(request_class, provider).model)
            if config and self.is_usable(config, user_id):
                candidates.append(config)

        if not candidates:
            raise ProviderUnavailable("default", "no enabled provider has credentials configured")

        return min(candidates, key=lambda c: c.priority).provider_name

    def resolve(
        self,
        selection: ModelSelection,
        request_class: RequestClass,
        user_id: Optional[str] = None,
    ) -> ProviderClient:
        """
        Resolve a model selection to a provider client.

        With ``user_id``, the user's stored keys and default provider are
        consulted before the platform configuration.

        Raises:
            ProviderUnavailable: provider/model unknown, disabled, or missing credentials
        """
        if selection.provider:
            try:
                provider = ProviderName.parse(selection.provider)
            except ValueError:
                raise ProviderUnavailable(selection.provider, "unknown provider")
        else:
            provider = self.default_provider(request_class, user_id)

        model_id = selection.model or get_class_defaults(request_class, provider).model
        config = self.get_config(provider, model_id)

        if config is None:
            raise ProviderUnavailable(provider.value, f"model '{model_id}' is not offered")
        if not config.is_enabled:
            raise ProviderUnavailable(provider.value, "provider is disabled")
        if not self.has_credentials(config, user_id):
            raise ProviderUnavailable(provider.value, "missing credentials")

        logger.info(f"Resolved selection to {provider.value}/{model_id}")
        return ProviderClient(config, self.credentials, ADAPTERS[provider], user_id=user_id)
