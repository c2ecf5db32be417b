"""
AI Provider Registry & Adapters

Resolves a user's model selection to a provider client and normalizes every
provider's response into a common ``Completion(text, tokens_used)``.
"""

from .catalog import ProviderName, RequestClass, ModelDefaults, get_class_defaults
from .credentials import CredentialStore
from .adapters import Completion, InvokeOptions
from .registry import ProviderConfig, ModelSelection, ProviderClient, ProviderRegistry

__all__ = [
    "ProviderName",
    "RequestClass",
    "ModelDefaults",
    "get_class_defaults",
    "CredentialStore",
    "Completion",
    "InvokeOptions",
    "ProviderConfig",
    "ModelSelection",
    "ProviderClient",
    "ProviderRegistry",
]
