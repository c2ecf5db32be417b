from fastapi import APIRouter, Depends, Query
from typing import Annotated

from promptopt.auth.deps import AuthenticatedUser, get_current_user
from promptopt.metering.reporting import UsageReporter
from promptopt.schemas.usage import UsageResponse
from promptopt.services import get_reporter

router = APIRouter()


@router.get("/user/usage", response_model=UsageResponse)
def get_usage(
    current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
    reporter: Annotated[UsageReporter, Depends(get_reporter)],
    days: int = Query(30, description="Number of days of history, 1-365"),
):
    """Today's usage, effective quota, daily history and totals for the caller."""
    return reporter.summarize(current_user.user_id, days).to_dict()
