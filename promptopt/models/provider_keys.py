from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, String, Text
from promptopt.models.base import Base


class UserProviderKey(Base):
    """
    A user's own API key for one provider, encrypted at rest.

    When present and active it takes precedence over the platform key.
    """

    __tablename__ = "user_provider_keys"

    user_id = Column(String, primary_key=True)
    provider = Column(String(32), primary_key=True)
    encrypted_key = Column(Text, nullable=False)
    display_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UserProviderKey(user_id={self.user_id}, provider={self.provider})>"


class UserPreference(Base):
    """Per-user dispatch preferences."""

    __tablename__ = "user_preferences"

    user_id = Column(String, primary_key=True)
    default_provider = Column(String(32), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
