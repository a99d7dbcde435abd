"""Health check endpoint."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from shipyard import __version__
from shipyard.api.deps import OrchestratorDep, SettingsDep

router = APIRouter()


class HealthResponse(BaseModel):
    """Service liveness and whether a pipeline is running."""

    status: str = "healthy"
    version: str
    environment: str
    deployment_in_progress: bool
    timestamp: datetime


@router.get("/health", response_model=HealthResponse)
async def health_check(
    app_settings: SettingsDep, orchestrator: OrchestratorDep
) -> HealthResponse:
    return HealthResponse(
        version=__version__,
        environment=app_settings.app_env,
        deployment_in_progress=orchestrator.in_progress,
        timestamp=datetime.utcnow(),
    )
