import pytest
from cryptography.fernet import Fernet

from promptopt.config import Settings
from promptopt.errors import ProviderUnavailable
from promptopt.providers.adapters import Completion, InvokeOptions
from promptopt.providers.catalog import ProviderName, RequestClass
from promptopt.providers.credentials import CredentialStore, user_reference
from promptopt.providers.keystore import KeyCipher, UserKeyStore
from promptopt.providers.registry import ModelSelection, ProviderConfig, ProviderRegistry
from tests.helpers import make_credentials


@pytest.fixture
def settings():
    return Settings(
        ENABLED_PROVIDERS=["openai", "anthropic", "gemini", "groq"],
        PROVIDER_PRIORITY=["anthropic", "openai", "google", "groq", "openrouter"],
        EXTRA_MODELS=["openai:gpt-4.1-mini"],
    )


@pytest.fixture
def registry(settings):
    return ProviderRegistry.from_settings(
        settings,
        credentials=make_credentials(ProviderName.OPENAI, ProviderName.ANTHROPIC, ProviderName.GOOGLE),
    )


def test_default_provider_follows_priority(registry):
    client = registry.resolve(ModelSelection(), RequestClass.QUICK)

    assert client.provider_name == "anthropic"
    assert client.model_id == "claude-3-5-haiku-20241022"


def test_default_skips_providers_without_credentials():
    settings = Settings(ENABLED_PROVIDERS=["openrouter", "groq", "openai"])
    registry = ProviderRegistry.from_settings(settings, credentials=make_credentials(ProviderName.OPENAI))

    assert registry.default_provider(RequestClass.DEEP) is ProviderName.OPENAI


def test_missing_model_uses_class_default(registry):
    assert registry.resolve(ModelSelection(provider="openai"), RequestClass.QUICK).model_id == "gpt-4o-mini"
    assert registry.resolve(ModelSelection(provider="openai"), RequestClass.DEEP).model_id == "gpt-4o"


def test_gemini_alias_resolves_to_google(registry):
    client = registry.resolve(ModelSelection(provider="Gemini"), RequestClass.DEEP)

    assert client.provider_name == "google"
    assert client.model_id == "gemini-1.5-pro"


def test_extra_models_are_offered(registry):
    client = registry.resolve(ModelSelection(provider="openai", model="gpt-4.1-mini"), RequestClass.QUICK)
    assert client.model_id == "gpt-4.1-mini"


@pytest.mark.parametrize("selection, reason", [
    (ModelSelection(provider="mistral"), "unknown provider"),
    (ModelSelection(provider="openai", model="gpt-2"), "is not offered"),
    (ModelSelection(provider="openrouter"), "disabled"),
    (ModelSelection(provider="groq"), "missing credentials"),
])
def test_resolve_fails_closed(registry, selection, reason):
    with pytest.raises(ProviderUnavailable) as exc:
        registry.resolve(selection, RequestClass.QUICK)
    assert reason in exc.value.detail


def test_no_usable_provider_raises():
    registry = ProviderRegistry.from_settings(Settings(), credentials=make_credentials())

    with pytest.raises(ProviderUnavailable):
        registry.resolve(ModelSelection(), RequestClass.QUICK)


def test_list_configs_hides_disabled_and_secrets(registry):
    configs = registry.list_configs()

    assert configs
    assert all(c.is_enabled for c in configs)
    assert [c.priority for c in configs] == sorted(c.priority for c in configs)

    public = configs[0].to_public_dict()
    assert set(public) == {"provider", "model", "enabled", "priority"}

    all_configs = registry.list_configs(include_disabled=True)
    assert any(c.provider_name is ProviderName.OPENROUTER for c in all_configs)


def test_client_looks_up_key_at_invoke_time():
    config = ProviderConfig(ProviderName.ANTHROPIC, "claude-3-5-haiku-20241022", "env:ANTHROPIC_API_KEY",
                            base_url="https://api.anthropic.com/v1")
    secrets = {"env:ANTHROPIC_API_KEY": "first"}
    registry = ProviderRegistry([config], CredentialStore(secrets=secrets))
    seen = []

    def fake_adapter(cfg, api_key, prompt, options):
        seen.append(api_key)
        return Completion("ok", 1)

    client = registry.resolve(ModelSelection(provider="anthropic"), RequestClass.QUICK)
    client._adapter = fake_adapter
    secrets_store = registry.credentials.secrets
    secrets_store["env:ANTHROPIC_API_KEY"] = "rotated"

    client.invoke("hi", InvokeOptions(max_tokens=10, temperature=0.5, timeout=5))
    assert seen == ["rotated"]

    secrets_store["env:ANTHROPIC_API_KEY"] = ""
    with pytest.raises(ProviderUnavailable):
        client.invoke("hi", InvokeOptions(max_tokens=10, temperature=0.5, timeout=5))


def test_credential_store_reads_settings_then_environment(monkeypatch):
    settings = Settings(OPENAI_API_KEY="from-settings", GROQ_API_KEY=None)
    monkeypatch.setenv("GROQ_API_KEY", "from-env")
    store = CredentialStore(settings)

    assert store.lookup("env:OPENAI_API_KEY") == "from-settings"
    assert store.lookup("env:GROQ_API_KEY") == "from-env"
    assert store.lookup("vault:secret/openai") is None
    assert store.has(None) is False


@pytest.fixture
def user_keys(session_factory):
    return UserKeyStore(KeyCipher(Fernet.generate_key()), session_factory=session_factory)


def test_user_key_makes_provider_usable_for_that_user_only(settings, user_keys):
    user_keys.save_key("user-1", ProviderName.GROQ, "gsk_users_own_key")
    registry = ProviderRegistry.from_settings(settings, credentials=make_credentials(user_keys=user_keys))

    client = registry.resolve(ModelSelection(provider="groq"), RequestClass.QUICK, user_id="user-1")
    assert client.model_id == "llama-3.1-8b-instant"

    with pytest.raises(ProviderUnavailable):
        registry.resolve(ModelSelection(provider="groq"), RequestClass.QUICK, user_id="user-2")


def test_user_key_takes_precedence_over_platform_key(user_keys):
    user_keys.save_key("user-1", ProviderName.OPENAI, "sk-user-owned-key")
    store = make_credentials(ProviderName.OPENAI, user_keys=user_keys)

    assert store.resolve_for("user-1", ProviderName.OPENAI, "env:OPENAI_API_KEY") == "sk-user-owned-key"
    assert store.resolve_for("user-2", ProviderName.OPENAI, "env:OPENAI_API_KEY") == "test-key-openai"
    assert store.resolve_for(None, ProviderName.OPENAI, "env:OPENAI_API_KEY") == "test-key-openai"


def test_default_provider_honours_user_preference(registry, user_keys):
    user_keys.set_default_provider("user-1", ProviderName.OPENAI)
    registry.credentials.user_keys = user_keys

    assert registry.default_provider(RequestClass.QUICK, user_id="user-1") is ProviderName.OPENAI
    assert registry.default_provider(RequestClass.QUICK, user_id="user-2") is ProviderName.ANTHROPIC


def test_unusable_preference_falls_back_to_priority(registry, user_keys):
    user_keys.set_default_provider("user-1", ProviderName.GROQ)
    registry.credentials.user_keys = user_keys

    assert registry.default_provider(RequestClass.QUICK, user_id="user-1") is ProviderName.ANTHROPIC


def test_credential_store_resolves_user_references(user_keys):
    user_keys.save_key("user:with:colons", ProviderName.GOOGLE, "AIzaColonUserKey")
    store = CredentialStore(user_keys=user_keys)

    assert store.lookup(user_reference("user:with:colons", ProviderName.GOOGLE)) == "AIzaColonUserKey"
    assert store.lookup("user:user:with:colons:gemini") == "AIzaColonUserKey"
    assert store.lookup("user:user:with:colons:mistral") is None
    assert CredentialStore().lookup(user_reference("user-1", ProviderName.GOOGLE)) is None
