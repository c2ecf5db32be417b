"""
User Provider Keys

Users may bring their own API key for any provider; it takes precedence over
the platform key. Keys are encrypted at rest with Fernet and only decrypted at
invocation time. Each user may also pick a default provider used when a
request names none.
"""

import base64
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from promptopt.database import SessionLocal
from promptopt.errors import ValidationError
from promptopt.models.provider_keys import UserPreference, UserProviderKey
from promptopt.providers.catalog import KEY_PREFIXES, ProviderName

logger = logging.getLogger(__name__)

KEY_DERIVATION_SALT = b"promptopt-provider-keys"


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "********"
    return f"{api_key[:4]}********{api_key[-4:]}"


class KeyCipher:
    """Symmetric encryption for stored provider keys."""

    def __init__(self, key: bytes):
        self.fernet = Fernet(key)

    @classmethod
    def from_settings(cls, settings) -> "KeyCipher":
        """
        Use ``API_KEY_ENCRYPTION_KEY`` when set, else derive a key from
        ``JWT_SECRET`` with scrypt.
        """
        if settings.API_KEY_ENCRYPTION_KEY:
            return cls(settings.API_KEY_ENCRYPTION_KEY.encode("utf-8"))

        logger.warning("API_KEY_ENCRYPTION_KEY not set; deriving the key encryption key from JWT_SECRET")
        kdf = Scrypt(salt=KEY_DERIVATION_SALT, length=32, n=2 ** 14, r=8, p=1)
        return cls(base64.urlsafe_b64encode(kdf.derive(settings.JWT_SECRET.encode("utf-8"))))

    def encrypt(self, plaintext: str) -> str:
        return self.fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Raises:
            cryptography.fernet.InvalidToken: wrong key or corrupted data
        """
        return self.fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")


class UserKeyStore:
    """Per-user provider keys and default provider, backed by the row store."""

    def __init__(self, cipher: KeyCipher, session_factory: Callable[[], Session] = SessionLocal):
        self.cipher = cipher
        self.session_factory = session_factory

    def save_key(
        self,
        user_id: str,
        provider: ProviderName,
        api_key: str,
        display_name: Optional[str] = None,
    ) -> Dict[str, object]:
        """
        Store (or replace) a user's key for a provider.

        Raises:
            ValidationError: empty key or a key that does not look like the provider's
        """
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValidationError("api_key", "API key must not be empty")

        prefix = KEY_PREFIXES.get(provider)
        if prefix and not api_key.startswith(prefix):
            raise ValidationError("api_key", f"A {provider.value} API key starts with '{prefix}'")

        db = self.session_factory()
        try:
            record = db.get(UserProviderKey, (user_id, provider.value))
            if record is None:
                record = UserProviderKey(user_id=user_id, provider=provider.value)
                db.add(record)

            record.encrypted_key = self.cipher.encrypt(api_key)
            record.display_name = display_name or provider.value
            record.is_active = True
            record.updated_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Stored {provider.value} API key for user={user_id}")
        return {
            "provider": provider.value,
            "is_configured": True,
            "is_active": True,
            "display_name": display_name or provider.value,
            "masked_key": mask_api_key(api_key),
        }

    def get_key(self, user_id: str, provider: ProviderName) -> Optional[str]:
        """The user's decrypted, active key for a provider, or None."""
        db = self.session_factory()
        try:
            record = db.get(UserProviderKey, (user_id, provider.value))
            encrypted = record.encrypted_key if record is not None and record.is_active else None
        finally:
            db.close()

        if encrypted is None:
            return None

        try:
            return self.cipher.decrypt(encrypted)
        except InvalidToken:
            # Rotated encryption key: the platform key applies until the user re-saves
            logger.error(f"Stored {provider.value} key for user={user_id} cannot be decrypted")
            return None

    def list_keys(self, user_id: str) -> List[Dict[str, object]]:
        """Configuration status for every provider, with keys masked."""
        db = self.session_factory()
        try:
            records = {
                r.provider: r
                for r in db.query(UserProviderKey).filter(UserProviderKey.user_id == user_id).all()
            }
        finally:
            db.close()

        entries = []
        for provider in ProviderName:
            record = records.get(provider.value)
            if record is None:
                entries.append({
                    "provider": provider.value,
                    "is_configured": False,
                    "is_active": False,
                    "display_name": None,
                    "masked_key": "",
                })
                continue

            try:
                masked = mask_api_key(self.cipher.decrypt(record.encrypted_key))
            except InvalidToken:
                masked = "********"
            entries.append({
                "provider": provider.value,
                "is_configured": True,
                "is_active": record.is_active,
                "display_name": record.display_name,
                "masked_key": masked,
            })
        return entries

    def delete_key(self, user_id: str, provider: ProviderName) -> bool:
        db = self.session_factory()
        try:
            record = db.get(UserProviderKey, (user_id, provider.value))
            if record is None:
                return False
            db.delete(record)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Deleted {provider.value} API key for user={user_id}")
        return True

    def get_default_provider(self, user_id: str) -> Optional[ProviderName]:
        db = self.session_factory()
        try:
            preference = db.get(UserPreference, user_id)
            stored = preference.default_provider if preference is not None else None
        finally:
            db.close()

        if not stored:
            return None
        try:
            return ProviderName.parse(stored)
        except ValueError:
            logger.warning(f"Ignoring unknown default provider {stored!r} for user={user_id}")
            return None

    def set_default_provider(self, user_id: str, provider: ProviderName) -> None:
        db = self.session_factory()
        try:
            preference = db.get(UserPreference, user_id)
            if preference is None:
                preference = UserPreference(user_id=user_id)
                db.add(preference)
            preference.default_provider = provider.value
            preference.updated_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Default provider for user={user_id} set to {provider.value}")
