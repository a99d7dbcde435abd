"""Deployment history endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from shipyard.api.deps import HistoryDep
from shipyard.models.deployment import DeploymentHistoryRecord

router = APIRouter()


@router.get(
    "",
    response_model=list[DeploymentHistoryRecord],
    summary="List deployment history",
)
async def list_history(
    history: HistoryDep,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> list[DeploymentHistoryRecord]:
    """List past deployment and proxy-setup attempts, most recent first."""
    return await history.list_records(limit=limit)
