from fastapi import APIRouter, Depends
from typing import Annotated, List

from promptopt.auth.deps import AuthenticatedUser, get_current_user
from promptopt.providers.registry import ProviderRegistry
from promptopt.schemas.dispatch import ProviderInfo
from promptopt.services import get_registry

router = APIRouter()


@router.get("/providers", response_model=List[ProviderInfo])
def list_providers(
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    registry: Annotated[ProviderRegistry, Depends(get_registry)],
):
    """Enabled provider/model pairs for model pickers. Credentials are never exposed."""
    return [config.to_public_dict() for config in registry.list_configs()]
