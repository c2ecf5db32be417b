import logging
from fastapi import APIRouter, Depends, HTTPException, status
from typing import Annotated

from promptopt.auth.deps import AuthenticatedUser, get_current_user
from promptopt.errors import ValidationError
from promptopt.providers.catalog import ProviderName
from promptopt.providers.keystore import UserKeyStore
from promptopt.schemas.settings import ApiKeyIn, ApiKeyInfo, ApiKeySettings, DefaultProviderIn
from promptopt.services import get_key_store

router = APIRouter()
logger = logging.getLogger(__name__)


def _parse_provider(value: str) -> ProviderName:
    try:
        return ProviderName.parse(value)
    except ValueError:
        raise ValidationError("provider", f"Unknown provider '{value}'")


@router.get("/settings/api-keys", response_model=ApiKeySettings)
def list_api_keys(
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    key_store: Annotated[UserKeyStore, Depends(get_key_store)],
):
    """Which providers the caller has keys for (masked) and their default provider."""
    default = key_store.get_default_provider(current_user.user_id)
    return {
        "api_keys": key_store.list_keys(current_user.user_id),
        "default_provider": default.value if default else None,
    }


@router.post("/settings/api-keys", response_model=ApiKeyInfo, status_code=status.HTTP_201_CREATED)
def save_api_key(
    body: ApiKeyIn,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    key_store: Annotated[UserKeyStore, Depends(get_key_store)],
):
    """Store the caller's own key for a provider; it takes precedence over the platform key."""
    provider = _parse_provider(body.provider)
    return key_store.save_key(current_user.user_id, provider, body.api_key, body.display_name)


@router.delete("/settings/api-keys/{provider}", status_code=status.HTTP_204_NO_CONTENT)
def delete_api_key(
    provider: str,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    key_store: Annotated[UserKeyStore, Depends(get_key_store)],
):
    if not key_store.delete_key(current_user.user_id, _parse_provider(provider)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No key stored for this provider")


@router.put("/settings/default-provider", response_model=DefaultProviderIn)
def set_default_provider(
    body: DefaultProviderIn,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    key_store: Annotated[UserKeyStore, Depends(get_key_store)],
):
    """Provider used when an optimize request names none."""
    provider = _parse_provider(body.provider)
    key_store.set_default_provider(current_user.user_id, provider)
    return {"provider": provider.value}
