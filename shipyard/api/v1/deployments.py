"""Deployment endpoints.

``POST /deploy`` and ``POST /deploy/setup-proxy`` answer with a chunked body
of newline-delimited JSON progress events. Each event is flushed as soon as
the pipeline emits it. The pipeline does not depend on the caller: if the
connection drops, it runs to completion and only the history record shows
the outcome.
"""

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from shipyard.api.deps import OrchestratorDep, SettingsDep
from shipyard.core.exceptions import BusyError
from shipyard.core.orchestrator import DeploymentAttempt
from shipyard.models.deployment import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    DeploymentStatusResponse,
    DeployRequest,
    ErrorResponse,
    ProxySetupRequest,
    ResetResponse,
    TargetListResponse,
)

router = APIRouter()

NDJSON = "application/x-ndjson"

_STREAM_RESPONSES = {
    status.HTTP_200_OK: {
        "description": "Newline-delimited JSON progress events",
        "content": {NDJSON: {}},
    },
    status.HTTP_409_CONFLICT: {
        "description": BusyError.__doc__,
        "model": ErrorResponse,
    },
}


def _progress_response(attempt: DeploymentAttempt) -> StreamingResponse:
    return StreamingResponse(
        attempt.stream.lines(),
        media_type=NDJSON,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Deployment-Id": str(attempt.record.id),
        },
    )


@router.post(
    "",
    summary="Deploy the current release to a target",
    responses=_STREAM_RESPONSES,
)
async def deploy(data: DeployRequest, orchestrator: OrchestratorDep) -> StreamingResponse:
    """Start a deployment and stream its progress."""
    attempt = await orchestrator.deploy(
        data.target,
        host=data.host,
        username=data.username,
    )
    return _progress_response(attempt)


@router.post(
    "/setup-proxy",
    summary="Set up nginx and SSL on a host",
    responses=_STREAM_RESPONSES,
)
async def setup_proxy(
    data: ProxySetupRequest, orchestrator: OrchestratorDep
) -> StreamingResponse:
    """Install and configure the reverse proxy and certificate, streaming progress."""
    attempt = await orchestrator.setup_proxy(data.host, data.username, data.domain)
    return _progress_response(attempt)


@router.get(
    "/status",
    response_model=DeploymentStatusResponse,
    summary="Get deployment status",
)
async def deployment_status(orchestrator: OrchestratorDep) -> DeploymentStatusResponse:
    """Report whether a pipeline currently holds the exclusion lock."""
    lease = orchestrator.lock.current
    return DeploymentStatusResponse(
        in_progress=lease is not None,
        kind=lease.kind if lease else None,
        state=lease.state if lease else None,
    )


@router.post(
    "/reset",
    response_model=ResetResponse,
    summary="Reset deployment status",
)
async def reset_deployment(orchestrator: OrchestratorDep) -> ResetResponse:
    """Clear the in-progress flag. Always succeeds."""
    orchestrator.reset()
    return ResetResponse()


@router.post(
    "/test",
    response_model=ConnectionTestResponse,
    summary="Test the SSH connection to a host",
)
async def test_connection(
    data: ConnectionTestRequest, orchestrator: OrchestratorDep
) -> ConnectionTestResponse:
    """Connect with the configured credentials and run ``whoami``."""
    return await orchestrator.test_connection(data.host, data.username)


@router.get(
    "/targets",
    response_model=TargetListResponse,
    summary="List deployment targets",
)
async def list_targets(app_settings: SettingsDep) -> TargetListResponse:
    """List the configured deployment targets."""
    return TargetListResponse(targets=app_settings.deployment_targets)
