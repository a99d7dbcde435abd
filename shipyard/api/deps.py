"""Dependency injection for API endpoints."""

import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from shipyard.config import Settings, settings
from shipyard.core.history import DeploymentHistoryStore, get_history_store
from shipyard.core.orchestrator import DeploymentOrchestrator, get_orchestrator


async def get_app_settings() -> Settings:
    """Get the application settings."""
    return settings


async def get_deployment_orchestrator() -> DeploymentOrchestrator:
    """Get the deployment orchestrator."""
    return get_orchestrator()


async def get_history() -> DeploymentHistoryStore:
    """Get the deployment history store."""
    return get_history_store()


async def require_auth(
    app_settings: Annotated[Settings, Depends(get_app_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Capability check: the request must carry an accepted bearer token."""
    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
    accepted = any(
        secrets.compare_digest(token.encode(), candidate.encode())
        for candidate in app_settings.api_tokens
    )
    if not token or not accepted:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


# Type aliases for cleaner signatures
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
OrchestratorDep = Annotated[DeploymentOrchestrator, Depends(get_deployment_orchestrator)]
HistoryDep = Annotated[DeploymentHistoryStore, Depends(get_history)]
AuthDep = Depends(require_auth)
