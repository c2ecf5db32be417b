from fastapi import APIRouter, Depends, Header, Response
from typing import Annotated, Optional

from promptopt.auth.deps import AuthenticatedUser, get_current_user
from promptopt.metering.dispatcher import DispatchOrchestrator, DispatchRequest
from promptopt.providers.registry import ModelSelection
from promptopt.schemas.dispatch import ErrorResponse, OptimizeRequest, OptimizeResponse
from promptopt.services import get_orchestrator

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _dispatch(
    response: Response,
    orchestrator: DispatchOrchestrator,
    current_user: AuthenticatedUser,
    request_class: Optional[str],
    body: OptimizeRequest,
    idempotency_key: Optional[str],
) -> OptimizeResponse:
    result = orchestrator.dispatch(DispatchRequest(
        user_id=current_user.user_id,
        request_class=request_class,
        prompt_payload=body.prompt_payload,
        selection=ModelSelection(provider=body.selection.provider, model=body.selection.model),
        request_id=idempotency_key or body.request_id,
    ))
    if result.replayed:
        response.headers["Idempotent-Replayed"] = "true"
    return OptimizeResponse(
        text=result.text,
        tokens_used=result.tokens_used,
        request_class=result.request_class.value,
        provider=result.provider,
        model=result.model,
        request_id=result.request_id,
        usage_recorded=result.usage_recorded,
    )


# Handlers are sync so FastAPI runs them in its threadpool: a client
# disconnect never interrupts a provider call or the usage commit.
@router.post("/optimize", response_model=OptimizeResponse, responses=ERROR_RESPONSES)
def optimize(
    body: OptimizeRequest,
    response: Response,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    orchestrator: Annotated[DispatchOrchestrator, Depends(get_orchestrator)],
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Optimize a prompt; the request class comes from the body."""
    return _dispatch(response, orchestrator, current_user, body.request_class, body, idempotency_key)


@router.post("/optimize/{request_class}", response_model=OptimizeResponse, responses=ERROR_RESPONSES)
def optimize_class(
    request_class: str,
    body: OptimizeRequest,
    response: Response,
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    orchestrator: Annotated[DispatchOrchestrator, Depends(get_orchestrator)],
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Optimize a prompt with the request class taken from the path (quick or deep)."""
    return _dispatch(response, orchestrator, current_user, request_class, body, idempotency_key)
