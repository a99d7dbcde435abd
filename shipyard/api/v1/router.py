"""Main router for API v1."""

from fastapi import APIRouter

from shipyard.api.deps import AuthDep
from shipyard.api.v1 import deployments, health, history

router = APIRouter(prefix="/v1")

# Include sub-routers
router.include_router(health.router, tags=["health"])
router.include_router(
    deployments.router,
    prefix="/deploy",
    tags=["deployments"],
    dependencies=[AuthDep],
)
router.include_router(
    history.router,
    prefix="/deployment-history",
    tags=["history"],
    dependencies=[AuthDep],
)
