import logging
from fastapi import APIRouter, Depends
from typing import Annotated, Any, Dict

from promptopt.auth.deps import AuthenticatedUser, require_admin
from promptopt.metering.ledger import QuotaLedger
from promptopt.metering.metrics import MetricsCollector
from promptopt.schemas.usage import QuotaResponse, QuotaUpdate
from promptopt.services import get_ledger, get_metrics

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/quotas/{user_id}", response_model=QuotaResponse)
def get_quota(
    user_id: str,
    admin: Annotated[AuthenticatedUser, Depends(require_admin)],
    ledger: Annotated[QuotaLedger, Depends(get_ledger)],
):
    return ledger.get_limits(user_id).to_dict()


@router.put("/quotas/{user_id}", response_model=QuotaResponse)
def update_quota(
    user_id: str,
    update: QuotaUpdate,
    admin: Annotated[AuthenticatedUser, Depends(require_admin)],
    ledger: Annotated[QuotaLedger, Depends(get_ledger)],
):
    """Override a user's tier and/or individual daily ceilings."""
    ceilings = update.model_dump(exclude={"tier"}, exclude_none=True)
    limits = ledger.set_limits(user_id, tier=update.tier, updated_by=admin.user_id, **ceilings)
    logger.info(f"Admin {admin.user_id} updated quota for {user_id}")
    return limits.to_dict()


@router.get("/metrics")
def get_metrics_snapshot(
    admin: Annotated[AuthenticatedUser, Depends(require_admin)],
    metrics: Annotated[MetricsCollector, Depends(get_metrics)],
) -> Dict[str, Any]:
    return metrics.get_all_metrics()
