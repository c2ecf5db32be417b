"""
Provider credential lookup.

Provider configs only carry a reference such as ``env:OPENAI_API_KEY``; the
secret is looked up here at invocation time so it never travels with the
config objects.

Two reference schemes are understood:
- ``env:<NAME>``: platform key from settings or the process environment
- ``user:<user_id>:<provider>``: a key the user stored for that provider

A user's own key takes precedence over the platform key.
"""

import os
import logging
from typing import Dict, Optional

from promptopt.providers.catalog import ProviderName
from promptopt.providers.keystore import UserKeyStore

logger = logging.getLogger(__name__)


def user_reference(user_id: str, provider: ProviderName) -> str:
    return f"user:{user_id}:{provider.value}"


class CredentialStore:
    """Resolves credential references to secrets."""

    def __init__(
        self,
        settings=None,
        secrets: Optional[Dict[str, str]] = None,
        user_keys: Optional[UserKeyStore] = None,
    ):
        """
        Args:
            settings: Settings object whose attributes back ``env:`` references
            secrets: Explicit reference -> secret mapping, checked first
            user_keys: Store backing ``user:`` references
        """
        self.settings = settings
        self.secrets = dict(secrets or {})
        self.user_keys = user_keys

    def lookup(self, reference: Optional[str]) -> Optional[str]:
        """Return the secret for a reference, or None when it cannot be resolved."""
        if not reference:
            return None

        if reference in self.secrets:
            return self.secrets[reference] or None

        scheme, _, name = reference.partition(":")
        if scheme == "user":
            return self._lookup_user_key(name)
        if scheme != "env" or not name:
            logger.warning(f"Unsupported credential reference scheme: {scheme!r}")
            return None

        value = getattr(self.settings, name, None) if self.settings is not None else None
        if not value:
            value = os.getenv(name)
        return value or None

    def _lookup_user_key(self, name: str) -> Optional[str]:
        user_id, _, provider_tag = name.rpartition(":")
        if self.user_keys is None or not user_id:
            return None
        try:
            provider = ProviderName.parse(provider_tag)
        except ValueError:
            logger.warning(f"Unknown provider in user credential reference: {provider_tag!r}")
            return None
        return self.user_keys.get_key(user_id, provider)

    def has(self, reference: Optional[str]) -> bool:
        return self.lookup(reference) is not None

    def resolve_for(self, user_id: Optional[str], provider: ProviderName, reference: Optional[str]) -> Optional[str]:
        """The user's own key for ``provider`` if stored, else the platform ``reference``."""
        if user_id:
            secret = self.lookup(user_reference(user_id, provider))
            if secret:
                return secret
        return self.lookup(reference)

    def default_provider_for(self, user_id: Optional[str]) -> Optional[ProviderName]:
        if not user_id or self.user_keys is None:
            return None
        return self.user_keys.get_default_provider(user_id)
