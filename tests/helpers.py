from promptopt.providers.catalog import DEFAULT_KEY_REFERENCES, ProviderName
from promptopt.providers.credentials import CredentialStore


def make_credentials(*providers: ProviderName, user_keys=None) -> CredentialStore:
    """Credential store holding test keys for the given providers only."""
    secrets = {ref: "" for ref in DEFAULT_KEY_REFERENCES.values()}
    for provider in providers:
        secrets[DEFAULT_KEY_REFERENCES[provider]] = f"test-key-{provider.value}"
    return CredentialStore(secrets=secrets, user_keys=user_keys)


class FakeClock:
    """Manually advanced time source, starting on a minute boundary."""

    def __init__(self, start: float = 1_700_000_040.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds
