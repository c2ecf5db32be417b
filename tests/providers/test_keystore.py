import pytest
from cryptography.fernet import Fernet

from promptopt.config import Settings
from promptopt.errors import ValidationError
from promptopt.models.provider_keys import UserProviderKey
from promptopt.providers.catalog import ProviderName
from promptopt.providers.keystore import KeyCipher, UserKeyStore, mask_api_key


@pytest.fixture
def cipher():
    return KeyCipher(Fernet.generate_key())


@pytest.fixture
def key_store(cipher, session_factory):
    return UserKeyStore(cipher, session_factory=session_factory)


def test_saved_key_round_trips(key_store):
    info = key_store.save_key("user-1", ProviderName.OPENAI, "  sk-live-0123456789  ", display_name="Work")

    assert info["masked_key"] == "sk-l********6789"
    assert info["display_name"] == "Work"
    assert key_store.get_key("user-1", ProviderName.OPENAI) == "sk-live-0123456789"
    assert key_store.get_key("user-2", ProviderName.OPENAI) is None
    assert key_store.get_key("user-1", ProviderName.GROQ) is None


def test_key_is_encrypted_at_rest(key_store, session_factory):
    key_store.save_key("user-1", ProviderName.GROQ, "gsk_plaintext_secret")

    db = session_factory()
    try:
        record = db.get(UserProviderKey, ("user-1", "groq"))
        assert record.encrypted_key
        assert "gsk_plaintext_secret" not in record.encrypted_key
    finally:
        db.close()


def test_saving_again_replaces_the_key(key_store):
    key_store.save_key("user-1", ProviderName.ANTHROPIC, "sk-ant-first-key")
    key_store.save_key("user-1", ProviderName.ANTHROPIC, "sk-ant-second-key")

    assert key_store.get_key("user-1", ProviderName.ANTHROPIC) == "sk-ant-second-key"


@pytest.mark.parametrize("provider, api_key", [
    (ProviderName.GROQ, "sk-not-a-groq-key"),
    (ProviderName.ANTHROPIC, "sk-openai-style"),
    (ProviderName.OPENROUTER, "   "),
])
def test_rejects_keys_that_do_not_match_provider(key_store, provider, api_key):
    with pytest.raises(ValidationError) as exc:
        key_store.save_key("user-1", provider, api_key)

    assert exc.value.field == "api_key"
    assert key_store.get_key("user-1", provider) is None


def test_list_keys_covers_every_provider_masked(key_store):
    key_store.save_key("user-1", ProviderName.GOOGLE, "AIzaSyExampleKey1234")

    entries = {e["provider"]: e for e in key_store.list_keys("user-1")}

    assert set(entries) == {p.value for p in ProviderName}
    assert entries["google"]["is_configured"] is True
    assert entries["google"]["masked_key"] == "AIza********1234"
    assert entries["openai"]["is_configured"] is False
    assert entries["openai"]["masked_key"] == ""


def test_delete_key(key_store):
    key_store.save_key("user-1", ProviderName.OPENAI, "sk-delete-me-please")

    assert key_store.delete_key("user-1", ProviderName.OPENAI) is True
    assert key_store.get_key("user-1", ProviderName.OPENAI) is None
    assert key_store.delete_key("user-1", ProviderName.OPENAI) is False


def test_default_provider_per_user(key_store):
    assert key_store.get_default_provider("user-1") is None

    key_store.set_default_provider("user-1", ProviderName.ANTHROPIC)
    key_store.set_default_provider("user-1", ProviderName.GROQ)

    assert key_store.get_default_provider("user-1") is ProviderName.GROQ
    assert key_store.get_default_provider("user-2") is None


def test_key_from_rotated_cipher_is_ignored(key_store, session_factory):
    key_store.save_key("user-1", ProviderName.OPENAI, "sk-old-cipher-key")
    rotated = UserKeyStore(KeyCipher(Fernet.generate_key()), session_factory=session_factory)

    assert rotated.get_key("user-1", ProviderName.OPENAI) is None
    entries = {e["provider"]: e for e in rotated.list_keys("user-1")}
    assert entries["openai"]["masked_key"] == "********"


def test_cipher_derived_from_jwt_secret_is_stable():
    settings = Settings(JWT_SECRET="a-long-enough-test-secret", API_KEY_ENCRYPTION_KEY=None)

    token = KeyCipher.from_settings(settings).encrypt("sk-anything")

    assert KeyCipher.from_settings(settings).decrypt(token) == "sk-anything"


def test_explicit_encryption_key_is_used():
    key = Fernet.generate_key()
    token = KeyCipher(key).encrypt("gsk_explicit")

    cipher = KeyCipher.from_settings(Settings(API_KEY_ENCRYPTION_KEY=key.decode("utf-8")))

    assert cipher.decrypt(token) == "gsk_explicit"


def test_short_keys_are_fully_masked():
    assert mask_api_key("sk-1234") == "********"
